from dataclasses import dataclass
from typing import Callable

from sqlalchemy import JSON, Column, String, Table
from sqlalchemy.orm import Session
from sqlalchemy.sql import select
import zope.interface

from ..interfaces import IShopRecordSerializer, IShopStorage


def make_shops_table(metadata, name="shopify_shops"):
    return Table(
        name,
        metadata,
        Column("shop_domain", String(255), primary_key=True),
        Column("value", JSON, nullable=False),
    )


@zope.interface.implementer(IShopStorage)
@dataclass
class SqlalchemyShopStorage:
    """Store shop records serialized as json in db with SQLAlchemy."""

    db: Session
    table: Table
    serializer: IShopRecordSerializer

    mark_changed: Callable = None

    def store_shop(self, record):
        record_dict = self.serializer.to_dict(record)
        shop_domain = record_dict["shop_domain"]
        exists = self.db.execute(
            select(self.table.c.shop_domain).where(
                self.table.c.shop_domain == shop_domain
            )
        ).first()
        if exists:
            stmt = (
                self.table.update()
                .where(self.table.c.shop_domain == shop_domain)
                .values(value=record_dict)
            )
        else:
            stmt = self.table.insert().values(
                shop_domain=shop_domain, value=record_dict
            )
        result = self.db.execute(stmt)
        if self.mark_changed:
            self.mark_changed(self.db)
        return result

    def load_shop(self, shop_domain):
        row = (
            self.db.execute(
                select(self.table).where(self.table.c.shop_domain == shop_domain)
            )
            .mappings()
            .first()
        )
        return self.serializer.from_dict(row["value"]) if row else None

    def remove_shop(self, shop_domain):
        """Forget the shop.

        This is intended to be used when shop uninstalls application.
        """
        result = self.db.execute(
            self.table.delete().where(self.table.c.shop_domain == shop_domain)
        )
        if self.mark_changed:
            self.mark_changed(self.db)
        return result

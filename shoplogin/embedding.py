from dataclasses import dataclass


TOP_LEVEL_PARAM = "top_level"


EMBEDDED_PARAM = "embedded"


@dataclass(frozen=True)
class EmbeddingState:
    """
    Where the current request thinks it is running.

    Only the presence of the markers matters, "top_level=" counts the same as
    "top_level=true".
    """

    # From configuration, the app is loaded inside the admin iframe.
    is_embedded_app: bool
    has_top_level_param: bool
    has_embedded_param: bool

    @property
    def is_top_level(self):
        return not self.is_embedded_app or self.has_top_level_param


def detect_embedding(is_embedded_app, params):
    return EmbeddingState(
        is_embedded_app=bool(is_embedded_app),
        has_top_level_param=TOP_LEVEL_PARAM in params,
        has_embedded_param=EMBEDDED_PARAM in params,
    )

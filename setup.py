from setuptools import setup, find_packages
import sys

if sys.version_info < (3,):
    print("Please use python3.")
    sys.exit(1)


requires = [
    "cryptography",
    "requests",
    "zope.interface",
]

sqlalchemy_deps = ["sqlalchemy"]

pyramid_deps = ["pyramid"]


setup(
    name="shoplogin",
    version="0.1a",
    description="Unofficial login and install flow for embedded shopify apps.",
    author="Ian Wilson",
    author_email="ian@laspilitas.com",
    install_requires=requires,
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    zip_safe=False,
    python_requires=">=3.9",
    extras_require={
        "sqlalchemy": sqlalchemy_deps,
        "pyramid": pyramid_deps,
        "test": ["pytest"] + sqlalchemy_deps + pyramid_deps,
        "dev": ["flake8", "black"],
    },
)

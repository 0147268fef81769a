import pathlib

from setuptools import setup

VERSION = "0.1.0"

HERE = pathlib.Path(__file__).parent
README = (HERE / "README.md").read_text()

setup(
    name="mbed_cloud_connect",
    version=VERSION,
    description="Asyncio library for the Pelion Device Management connect API",
    long_description=README,
    long_description_content_type="text/markdown",
    keywords="mbed pelion iot lwm2m device management notifications",
    package_data={"mbed_cloud_connect": ["py.typed"]},
    packages=["mbed_cloud_connect"],
    include_package_data=True,
    python_requires=">=3.11",
    install_requires=[
        "aiohttp>=3.8.0",
        "mashumaro>=3.11",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-aiohttp>=1.0.4",
            "pytest-asyncio>=0.21.0",
        ],
    },
    zip_safe=False,
)

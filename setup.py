"""
Setup script for tiny-proto.
"""

from setuptools import setup, find_packages

setup(
    name="tiny-proto",
    version="0.1.0",
    packages=find_packages(include=["tiny_proto", "tiny_proto.*"]),
    package_data={"tiny_proto": ["py.typed"]},
    install_requires=["numpy"],
    extras_require={"test": ["pytest"]},
)

from setuptools import setup, find_packages

setup(
    name="upload_broker_client",
    version="0.1.0",
    packages=find_packages(exclude=["tests"]),
    install_requires=["httpx>=0.26.0"],
    entry_points={
        "console_scripts": [
            "upload-broker=upload_broker_client.cli:main",
        ],
    },
)

"""Build peerlink package."""
import setuptools

with open("README.md") as f:
    long_desc = f.read()

setuptools.setup(
    name="peerlink",
    version="0.1.0",
    author="peerlink developers",
    description="Rendezvous and Signaling Relay Server for WebRTC Peers",
    long_description=long_desc,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=["tests*", "testing*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
    install_requires=[
        "click",
        "pydantic>=2",
        "tomli; python_version<'3.11'",
        "tomli-w",
        "typing-extensions>=4.0; python_version<'3.11'",
        "websockets>=14.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "pytest-timeout",
            "requests",
        ],
    },
    entry_points={
        "console_scripts": [
            "peerlink-relay = peerlink.relay.run:cli",
        ],
    },
)

from setuptools import setup, find_packages


setup(
    name="capsule",
    version="0.1",
    packages=find_packages(include=["capsule", "capsule.*"]),
    description="Seal files into opaque artifacts (digest, deflate, AES-256-CBC, XOR) and back.",
    author="vercingetorx",
    python_requires=">=3.9",
    install_requires=[
        "pycryptodomex>=3.23.0",
        "filetype>=1.2.0",
    ],
    entry_points={
        "console_scripts": [
            "capsule=capsule.cli:main",
        ]
    },
)

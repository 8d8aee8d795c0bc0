import setuptools

setuptools.setup(
    name="erasure-placement",
    version="0.1.0",
    description="Reliability-aware placement of erasure coded shards on fog nodes",
    python_requires=">=3.10",
    packages=setuptools.find_packages(exclude=("tests*",)),
    install_requires=[
        "pydantic>2.0",
        "scipy",
        "numpy",
        "reedsolo",
    ],
    extras_require={
        "test": ["pytest", "hypothesis"],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    entry_points={
        "console_scripts": [
            "place-shards = erasure_placement.tools.place_shards:main",
        ]
    },
)

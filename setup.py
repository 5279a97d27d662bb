import setuptools

if __name__ == "__main__":
    setuptools.setup(
        name="declauth",
        version="0.1.0",
        description="Declarative access filters for Tornado controllers",
        license="Apache-2.0",
        packages=setuptools.find_packages(include=["declauth", "declauth.*"]),
        python_requires=">=3.10",
        install_requires=[
            "tornado",
            "pyyaml",
            "sqlalchemy",
        ],
        extras_require={
            "test": ["pytest"],
        },
    )

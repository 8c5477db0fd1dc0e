from setuptools import setup, find_packages

setup(
    name="changeforge",
    version="0.2.0",
    packages=find_packages("src"),
    package_dir={"": "src"},
    python_requires=">=3.8",
    install_requires=[
        "click",
        "pyyaml",
        "jinja2",
        "clickhouse-driver",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "changeforge = changeforge.cli:main"
        ]
    },
)

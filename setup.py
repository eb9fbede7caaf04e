import setuptools


with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()


setuptools.setup(
    name="tellus-monitor",
    version="1.0.0",
    description="Connection and stream-state manager for the Tellus spectroscopy monitor",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
    package_dir={"": "src"},
    packages=setuptools.find_packages(where="src"),
    package_data={"tellus": ["run/config/*.yaml"]},
    python_requires=">=3.10",
    install_requires=[
        'paho-mqtt>=2.0', # MQTT client
        'pyyaml', # YAML parser
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
        ],
    },
    entry_points={
        'console_scripts': [
            'tellus-monitor = tellus.run.tellus_monitor:main',
        ],
    },
    include_package_data=True,
)

import setuptools

setuptools.setup(
    name="probpath",
    version="0.1.0",
    author="Edmond Cunningham",
    author_email="edmondcunnin@cs.umass.edu",
    description="Probability paths, vector fields and trajectories of 2D flow matching models",
    long_description=open("README.md", "r").read(),
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(include=["probpath", "probpath.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
    install_requires=open("requirements.txt").read().splitlines(),
    extras_require={"test": ["pytest"]},
)

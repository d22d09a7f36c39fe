from setuptools import setup, find_packages

setup(
    name="pdipm",
    version="0.1.0",
    packages=find_packages(exclude=["test", "test.*"]),
    install_requires=["numpy", "scipy", "matplotlib"],
    extras_require={"test": ["pytest"]},
    python_requires=">=3.10",
    author="Your Name",
    description="Primal-dual interior point method for convex optimization, with a quadratic programming interface",
    license="MIT",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License"
    ]
)

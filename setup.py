import pathlib

from setuptools import find_packages, setup


def get_version():
    """Gets the sumbench version."""
    path = CWD / "sumbench" / "__init__.py"
    content = path.read_text()

    for line in content.splitlines():
        if line.startswith("__version__"):
            return line.strip().split()[-1].strip().strip('"')
    raise RuntimeError("bad version data in __init__.py")


CWD = pathlib.Path(__file__).absolute().parent


setup(
    name="sumbench",
    version=get_version(),
    description="Fault-tolerant benchmarking of methods on a shared dataset",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(include=["sumbench", "sumbench.*"]),
    package_data={"sumbench": ["configs/*.yaml"]},
    install_requires=["numpy", "pandas", "pyyaml", "tqdm"],
    extras_require={"test": ["pytest"]},
    python_requires=">=3.10",
    include_package_data=True,
)

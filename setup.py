from pathlib import Path

from setuptools import find_namespace_packages, setup

root = Path(__file__).parent
readme = root / "README.md"

setup(
    name="jitwire",
    version="0.1.0",
    description="Runtime static-folding optimizer for server-side rendered component trees",
    long_description=readme.read_text("utf-8") if readme.exists() else "",
    long_description_content_type="text/markdown",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src", include=["jitwire", "jitwire.*"]),
    package_data={"jitwire": ["templates/error/*.html"]},
    include_package_data=True,
    install_requires=[
        "starlette>=0.27",
        "jinja2>=3.1",
        "rich>=13.0",
        "rich-click>=1.7",
        "uvicorn>=0.23",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "httpx>=0.24",
            "click>=8.1",
        ],
    },
    entry_points={
        "console_scripts": [
            "jitwire=jitwire.cli.main:cli",
        ],
    },
    zip_safe=False,
)

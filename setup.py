from setuptools import setup, find_packages

setup(
    name="ragprobe",
    version="0.1.0",
    description="RAG evaluation question-set generation and replay against chat models",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    package_data={
        "ragprobe": [
            "prompts/*.txt",
        ]
    },
    install_requires=[
        "pydantic>=2",
        "rich",
        "pyyaml",
        "langchain-core",
        "langchain-deepseek",
        "langchain-openai",
        "fastapi",
        "uvicorn",
    ],
    extras_require={
        "dev": ["pytest", "httpx"],
    },
    entry_points={"console_scripts": ["ragprobe=ragprobe.main:main"]},
    python_requires=">=3.11",
    zip_safe=False,
    classifiers=[
        "Programming Language :: Python :: 3.11",
        "Operating System :: Microsoft :: Windows",
        "Operating System :: POSIX :: Linux",
        "Operating System :: MacOS",
    ],
)

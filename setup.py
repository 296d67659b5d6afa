"""
Setup script for mcqgen.

mcqgen drafts board-style multiple-choice questions with a Gemini model
and refines them in a bounded loop:

1. Context - literature and knowledge-base snippets for the topic
2. Drafting - structured-text prompt, parsed into a typed draft
3. Refinement - structural validation and rubric scoring until accepted

The 'mcqgen' command is a developer harness around the pipeline.
"""

from setuptools import find_packages, setup

setup(
    name="mcqgen",
    version="0.3.0",
    description="Bounded LLM pipeline for drafting and refining board-style MCQs",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "mcqgen=mcqgen.cli:run",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
    ],
    keywords="mcq question-generation llm gemini education",
)

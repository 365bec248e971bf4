from setuptools import setup, find_packages

setup(
    name="diffscribe",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "requests",
        "pyyaml",
        "aiohttp>=3.9",
        # Symbol mapping — tree-sitter grammars
        "tree-sitter>=0.22",
        "tree-sitter-python",
        "tree-sitter-javascript",
        "tree-sitter-typescript",
        "tree-sitter-java",
        "tree-sitter-c",
        "tree-sitter-cpp",
        "tree-sitter-go",
        "tree-sitter-rust",
        "tree-sitter-ruby",
        "tree-sitter-php",
        "tree-sitter-c-sharp",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "diffscribe=diffscribe.cli:main",
        ],
    },
    description="Builds size-bounded diff context for LLM commit messages "
                "and validates what comes back.",
)

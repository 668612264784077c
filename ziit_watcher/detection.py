"""Language, project and branch detection for heartbeat metadata.

All functions are best-effort lookups: they return None when nothing can be
determined and never raise.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = [
    "detect_language",
    "detect_project",
    "detect_branch",
    "extract_project_from_remote_url",
]

GIT_TIMEOUT_SECONDS = 2.0

LANGUAGES_BY_EXTENSION = {
    "js": "JavaScript", "jsx": "JSX", "ts": "TypeScript", "tsx": "TSX",
    "html": "HTML", "htm": "HTML", "css": "CSS", "scss": "SCSS", "sass": "SCSS",
    "less": "LESS", "vue": "Vue.js", "svelte": "Svelte", "astro": "Astro",
    "rs": "Rust", "c": "C", "cpp": "C++", "cc": "C++", "cxx": "C++", "c++": "C++",
    "h": "C++", "hpp": "C++", "hxx": "C++", "go": "Go", "zig": "Zig", "v": "V",
    "java": "Java", "kt": "Kotlin", "kts": "Kotlin", "scala": "Scala", "sc": "Scala",
    "groovy": "Groovy", "gvy": "Groovy", "clj": "Clojure", "cljs": "Clojure", "cljc": "Clojure",
    "cs": "CSharp", "fs": "FSharp", "fsx": "FSharp", "vb": "Visual Basic",
    "py": "Python", "pyw": "Python", "pyi": "Python", "rb": "Ruby", "rbw": "Ruby",
    "php": "PHP", "pl": "Perl", "pm": "Perl", "lua": "Lua",
    "sh": "Shell Script", "bash": "Shell Script", "zsh": "Shell Script", "fish": "Fish",
    "ps1": "PowerShell", "psm1": "PowerShell", "psd1": "PowerShell", "r": "R",
    "hs": "Haskell", "lhs": "Haskell", "ml": "OCaml", "mli": "OCaml", "elm": "Elm",
    "ex": "Elixir", "exs": "Elixir", "erl": "Erlang", "hrl": "Erlang",
    "purs": "PureScript", "roc": "Roc", "gleam": "Gleam",
    "json": "JSON", "jsonc": "JSONC", "yaml": "YAML", "yml": "YAML", "toml": "TOML",
    "xml": "XML", "csv": "CSV", "ini": "ini", "cfg": "ini", "env": "env",
    "md": "Markdown", "markdown": "Markdown", "rst": "reST", "tex": "LaTeX",
    "adoc": "AsciiDoc", "asciidoc": "AsciiDoc", "org": "Org", "sql": "SQL",
    "graphql": "GraphQL", "gql": "GraphQL", "cypher": "Cypher", "cyp": "Cypher",
    "swift": "Swift", "m": "Objective-C", "dart": "Dart",
    "tf": "Terraform", "tfvars": "Terraform", "hcl": "HCL", "dockerfile": "Dockerfile",
    "pp": "Puppet", "proto": "Proto", "wasm": "WebAssembly Text Format",
    "wat": "WebAssembly Text Format", "wgsl": "Wgsl", "glsl": "GLSL", "vert": "GLSL",
    "frag": "GLSL", "hlsl": "HLSL", "sol": "Solidity", "cairo": "Cairo", "move": "Move",
    "noir": "Noir", "fe": "Fe", "aiken": "Aiken", "el": "Elisp", "lisp": "Lisp",
    "lsp": "Lisp", "scm": "Scheme", "ss": "Scheme", "rkt": "Racket", "jl": "Julia",
    "d": "D", "nim": "Nim", "cr": "Crystal", "pony": "Pony", "ada": "Ada", "adb": "Ada",
    "ads": "Ada", "pas": "Pascal", "f90": "Fortran", "f95": "Fortran", "f03": "Fortran",
    "f": "Fortran", "for": "Fortran", "cob": "COBOL", "cbl": "COBOL",
    "asm": "Assembly", "s": "Assembly", "bf": "Brainfuck", "pkl": "Pkl",
    "prisma": "Prisma", "gd": "GDScript", "gdshader": "Godot Shader", "wren": "Wren",
    "awk": "AWK", "sed": "sed", "jq": "jq", "just": "Just", "make": "Make",
    "cmake": "CMake", "ninja": "Ninja", "bazel": "Starlark", "bzl": "Starlark",
    "nix": "Nix", "dhall": "Dhall", "jsonnet": "Jsonnet", "cue": "CUE", "kdl": "Kdl",
    "ron": "RON",
}

PROJECT_MARKERS = (
    ".git",
    "Cargo.toml",
    "package.json",
    "go.mod",
    "pom.xml",
    "build.gradle",
    "CMakeLists.txt",
    "Makefile",
    "setup.py",
    "pyproject.toml",
    ".project",
    "composer.json",
    "Gemfile",
)


def detect_language(file_path: Optional[str]) -> Optional[str]:
    """Map a file extension to a language name."""
    if not file_path:
        return None
    path = Path(file_path)
    extension = path.suffix[1:].lower()
    if not extension:
        return None
    if extension in ("yml", "yaml") and path.name.startswith("docker-compose"):
        return "Docker Compose"
    return LANGUAGES_BY_EXTENSION.get(extension)


def _run_git(directory: Path, args: List[str]) -> Optional[str]:
    """Run a git command in ``directory`` and return stripped stdout, or None."""
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(directory),
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("git %s failed in %s: %s", " ".join(args), directory, e)
        return None
    if result.returncode != 0:
        return None
    output = result.stdout.strip()
    return output or None


def _containing_dir(file_path: str) -> Path:
    path = Path(file_path)
    try:
        return path if path.is_dir() else path.parent
    except OSError:
        return path.parent


def extract_project_from_remote_url(url: str) -> Optional[str]:
    """Return the repository name from an https or scp-style remote URL.

    >>> extract_project_from_remote_url("git@github.com:user/my-project.git")
    'my-project'
    """
    url = url.strip()
    if url.endswith(".git"):
        url = url[:-4]
    url = url.rstrip("/")

    if "@" in url and ":" in url and "://" not in url:
        url = url.split(":")[-1]

    project = url.split("/")[-1]
    return project or None


def _get_project_from_git(file_path: str) -> Optional[str]:
    directory = _containing_dir(file_path)
    remote_url = _run_git(directory, ["config", "--get", "remote.origin.url"])
    if remote_url:
        project = extract_project_from_remote_url(remote_url)
        if project:
            logger.debug("Extracted project '%s' from git remote URL", project)
            return project

    repo_root = _run_git(directory, ["rev-parse", "--show-toplevel"])
    if repo_root:
        name = Path(repo_root).name
        if name:
            logger.debug("Using git repo root directory name as project: '%s'", name)
            return name
    return None


def _has_project_markers(directory: Path) -> bool:
    try:
        return any((directory / marker).exists() for marker in PROJECT_MARKERS)
    except OSError:
        return False


def _get_project_from_path(file_path: str) -> Optional[str]:
    path = Path(file_path)
    for parent in path.parents:
        if parent.name and _has_project_markers(parent):
            logger.debug("Detected project '%s' from path structure", parent.name)
            return parent.name

    # Fall back to the immediate parent directory name
    if len(path.parts) >= 2 and path.parent.name:
        return path.parent.name
    return None


def detect_project(file_path: Optional[str]) -> Optional[str]:
    """Return the project name: git remote, git root, project markers, then parent dir."""
    if not file_path:
        return None
    return _get_project_from_git(file_path) or _get_project_from_path(file_path)


def detect_branch(file_path: Optional[str]) -> Optional[str]:
    """Return the current git branch; None when detached or outside a repository."""
    if not file_path:
        return None
    branch = _run_git(_containing_dir(file_path), ["rev-parse", "--abbrev-ref", "HEAD"])
    if branch and branch != "HEAD":
        logger.debug("Detected git branch: '%s'", branch)
        return branch
    return None

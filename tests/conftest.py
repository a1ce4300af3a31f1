"""Pytest configuration and fixtures."""

import io
import sqlite3
import tarfile
import pytest
from pathlib import Path


@pytest.fixture
def bundle_texts():
    """Return bundle definitions keyed by bundle name."""
    return {
        "os-core": "# Core OS\n\nglibc\nbash\n",
        "editors": "# Text editors\ninclude(os-core)\nvim\nnano\n",
        "dev-utils": "include(editors)\ninclude(python3-basic)\ngdb\n",
        "python3-basic": "python3\n",
    }


@pytest.fixture
def bundle_archive(tmp_path, bundle_texts):
    """Create a clr-bundles style release tarball."""
    archive_path = tmp_path / "clr-bundles.tar.gz"

    with tarfile.open(archive_path, "w:gz") as tar:
        members = {f"clr-bundles-31000/bundles/{name}": text for name, text in bundle_texts.items()}
        members["clr-bundles-31000/README.md"] = "not a bundle\n"

        for member_name, text in members.items():
            data = text.encode()
            info = tarfile.TarInfo(member_name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))

    return archive_path


# name, source rpm, requires, provides
PACKAGES = [
    ("bash", "bash-5.1-42.src.rpm", ["libc.so.6", "libreadline.so.8"], ["bash", "/bin/sh"]),
    ("glibc", "glibc-2.35-500.src.rpm", [], ["libc.so.6"]),
    ("musl-compat", "musl-1.2-3.src.rpm", [], ["libc.so.6"]),
    ("readline", "readline-8.1-20.src.rpm", ["libc.so.6", "libncurses"], ["libreadline.so.8"]),
    ("ncurses", "ncurses-6.3-30.src.rpm", ["libreadline.so.8"], ["libncurses"]),
    ("vim", "vim-9.0-1000.src.rpm", ["libc.so.6", "libmissing.so.1"], ["vim"]),
    ("nano", "nano-6.4-90.src.rpm", [], ["nano"]),
    ("python3", "python3-3.11-200.src.rpm", ["/bin/sh"], ["python3"]),
    ("gdb", "", ["python3"], ["gdb"]),
]


def create_primary_db(path: Path, packages=PACKAGES) -> Path:
    """Write a repodata primary database with the given packages."""
    conn = sqlite3.connect(path)
    try:
        conn.executescript(
            """
            CREATE TABLE packages (pkgKey INTEGER PRIMARY KEY, pkgId TEXT, name TEXT, rpm_sourcerpm TEXT);
            CREATE TABLE requires (name TEXT, pkgKey INTEGER);
            CREATE TABLE provides (name TEXT, pkgKey INTEGER);
            """
        )
        for key, (name, srpm, requires, provides) in enumerate(packages, 1):
            conn.execute("INSERT INTO packages VALUES (?, ?, ?, ?)", (key, f"{name}-id", name, srpm))
            conn.executemany("INSERT INTO requires VALUES (?, ?)", [(r, key) for r in requires])
            conn.executemany("INSERT INTO provides VALUES (?, ?)", [(p, key) for p in provides])
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def primary_db(tmp_path):
    """Create a sample primary.sqlite database."""
    return create_primary_db(tmp_path / "primary.sqlite")


@pytest.fixture
def make_primary_db(tmp_path):
    """Return a factory writing databases with custom package lists."""
    def factory(packages, name="custom.sqlite"):
        return create_primary_db(tmp_path / name, packages)
    return factory


# name -> shipped paths
FILES = {
    "bash": ["/usr/bin/bash", "/usr/bin/sh", "/usr/share/doc/bash/README"],
    "glibc": ["/usr/bin/ldd", "/usr/lib64/libc.so.6"],
    "musl-compat": ["/usr/lib64/libc.so.6"],
    "nano": ["/usr/bin/nano"],
}


def create_filelists_db(path: Path, files=FILES) -> Path:
    """Write a repodata filelists database.

    Keys are numbered differently from the primary database, so lookups
    must join on pkgId.
    """
    conn = sqlite3.connect(path)
    try:
        conn.executescript(
            """
            CREATE TABLE packages (pkgKey INTEGER PRIMARY KEY, pkgId TEXT);
            CREATE TABLE filelist (pkgKey INTEGER, dirname TEXT, filenames TEXT, filetypes TEXT);
            """
        )
        for key, name in enumerate(reversed(list(files)), 100):
            conn.execute("INSERT INTO packages VALUES (?, ?)", (key, f"{name}-id"))
            by_dir: dict[str, list[str]] = {}
            for file_path in files[name]:
                dirname, _, filename = file_path.rpartition("/")
                by_dir.setdefault(dirname, []).append(filename)
            for dirname, filenames in by_dir.items():
                conn.execute(
                    "INSERT INTO filelist VALUES (?, ?, ?, ?)",
                    (key, dirname, "/".join(filenames), "f" * len(filenames)),
                )
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def filelists_db(tmp_path):
    """Create a sample filelists.sqlite database."""
    return create_filelists_db(tmp_path / "filelist.sqlite")


@pytest.fixture
def graph_dot():
    """Return a dependency graph whose edges target relation subgraphs."""
    return """
digraph deps {
    // A needs one of X or Y, X needs Z
    "A" -> "A_deps";
    "X" -> "X_deps";
    subgraph "A_deps" {
        "X";
        "Y";
    }
    subgraph "X_deps" {
        "Z" [shape=box];
    }
    "W";
}
"""


@pytest.fixture
def graph_file(tmp_path, graph_dot):
    """Write the sample dependency graph to a file."""
    path = tmp_path / "deps.dot"
    path.write_text(graph_dot)
    return path

#!/usr/bin/env python3
"""
Command line front end for bundle and package resolution.

Every command takes its roots as positional arguments and, when input is
piped, as whitespace separated tokens on stdin. Results are printed one
per line.
"""

import argparse
import sys
from pathlib import Path
from typing import IO, Iterable

from closure_engine.bundles import BundleStore
from closure_engine.errors import DataUnavailableError, DissectorError
from closure_engine.relation_graph import RelationGraph
from closure_engine.requirements import RequirementIndex
from closure_engine.resolver import ClosureResolver, Mode

from .config import DissectorConfig, detect_installed_version, load_config
from .downloader import write_checksums_file
from .repodata import RepoFetcher
from .sources import SourceFetcher


def read_stdin_tokens(stream: IO[str] | None) -> list[str]:
    """Read whitespace separated tokens from piped input.

    Interactive terminals are not read.
    """
    if stream is None or stream.isatty():
        return []
    return stream.read().split()


def collect_roots(args: argparse.Namespace, stdin: IO[str] | None) -> list[str]:
    return list(getattr(args, "roots", [])) + read_stdin_tokens(stdin)


def build_config(args: argparse.Namespace) -> DissectorConfig:
    """Merge the config file with command line overrides."""
    config = load_config(args.config)
    return config.merged({
        "version": args.clear_version,
        "repo_url": args.repo_url,
        "bundles_url": args.bundles_url,
        "cache_dir": args.cache_dir,
        "verbose": False if args.quiet else None,
    })


def with_version(config: DissectorConfig) -> DissectorConfig:
    """Fill in the installed release version when none was given."""
    if config.version is not None:
        return config
    try:
        version = detect_installed_version()
    except DataUnavailableError as e:
        raise DataUnavailableError(
            "A version must be specified when not running on a Clear Linux instance!"
        ) from e
    return config.merged({"version": version})


def print_lines(lines: Iterable[str]) -> None:
    for line in sorted(set(lines)):
        print(line)


def load_bundle_store(args: argparse.Namespace, config: DissectorConfig) -> BundleStore:
    if args.bundles_dir:
        return BundleStore.from_directory(args.bundles_dir)
    if args.bundles_archive:
        return BundleStore.from_archive(args.bundles_archive)
    return RepoFetcher(with_version(config)).load_bundles()


def open_requirement_index(
    args: argparse.Namespace,
    config: DissectorConfig,
    filelists: bool = False,
) -> RequirementIndex:
    if args.db:
        filelists_path = getattr(args, "filelists", None) if filelists else None
        return RequirementIndex.open(args.db, filelists_path)
    return RepoFetcher(with_version(config)).open_requirements(filelists=filelists)


def cmd_resolve(args: argparse.Namespace, config: DissectorConfig, stdin: IO[str] | None) -> int:
    """Resolve bundles and packages to the package closure."""
    mode = Mode(args.mode)
    roots = collect_roots(args, stdin)

    bundles = load_bundle_store(args, config)
    requirements = None
    graph = None
    if mode == Mode.REQUIREMENTS:
        requirements = open_requirement_index(args, config)
    elif mode == Mode.RELATIONS:
        if not args.graph:
            raise DataUnavailableError("No dependency graph file provided")
        graph = RelationGraph.from_file(args.graph)

    try:
        resolver = ClosureResolver(bundles, requirements=requirements, graph=graph)
        print_lines(resolver.resolve(roots, mode))
    finally:
        if requirements is not None:
            requirements.close()
    return 0


def cmd_packages2packages(args: argparse.Namespace, config: DissectorConfig, stdin: IO[str] | None) -> int:
    """Close over package names with the requirement database."""
    with open_requirement_index(args, config) as requirements:
        if args.list:
            print_lines(requirements.package_names())
            return 0
        resolver = ClosureResolver(BundleStore([]), requirements=requirements)
        print_lines(resolver.resolve(collect_roots(args, stdin), Mode.REQUIREMENTS))
    return 0


def cmd_packages2files(args: argparse.Namespace, config: DissectorConfig, stdin: IO[str] | None) -> int:
    """Print the files shipped by packages."""
    files: set[str] = set()
    with open_requirement_index(args, config, filelists=True) as requirements:
        for name in collect_roots(args, stdin):
            files.update(requirements.files_of(name))
    print_lines(files)
    return 0


def cmd_files2package(args: argparse.Namespace, config: DissectorConfig, stdin: IO[str] | None) -> int:
    """Print the packages that ship the given paths."""
    packages: set[str] = set()
    with open_requirement_index(args, config, filelists=True) as requirements:
        for path in collect_roots(args, stdin):
            packages.update(requirements.packages_owning(path))
    print_lines(packages)
    return 0


def cmd_graph_deps(args: argparse.Namespace, config: DissectorConfig, stdin: IO[str] | None) -> int:
    """Close over package names with an external dependency graph."""
    graph = RelationGraph.from_file(args.file)

    if args.list:
        print_lines(graph.node_names())
        return 0

    resolver = ClosureResolver(BundleStore([]), graph=graph)
    print_lines(resolver.resolve(collect_roots(args, stdin), Mode.RELATIONS))
    return 0


def cmd_packages2source(args: argparse.Namespace, config: DissectorConfig, stdin: IO[str] | None) -> int:
    """Print source RPM URLs of packages."""
    config = with_version(config)
    with open_requirement_index(args, config) as requirements:
        fetcher = SourceFetcher(config, requirements)
        print_lines(fetcher.source_urls(collect_roots(args, stdin)).values())
    return 0


def cmd_image2bundles(args: argparse.Namespace, config: DissectorConfig, stdin: IO[str] | None) -> int:
    """Print the bundles of an image configuration."""
    fetcher = RepoFetcher(with_version(config))
    for bundle in fetcher.image_bundles(args.name):
        print(bundle)
    return 0


def cmd_download_repo(args: argparse.Namespace, config: DissectorConfig, stdin: IO[str] | None) -> int:
    """Download repodata and bundle definitions of a release."""
    fetcher = RepoFetcher(with_version(config))
    primary = fetcher.download_repo()
    archive = fetcher.fetch_bundle_archive()
    print(primary)
    print(archive)
    return 0


def cmd_download_sources(args: argparse.Namespace, config: DissectorConfig, stdin: IO[str] | None) -> int:
    """Download and unpack the sources of resolved bundles and packages."""
    config = with_version(config)
    fetcher = RepoFetcher(config)
    fetcher.download_repo()

    with fetcher.open_requirements() as requirements:
        if args.all:
            srpms = set(requirements.source_rpm_map().values())
        else:
            resolver = ClosureResolver(fetcher.load_bundles(), requirements=requirements)
            srpms = resolver.source_rpms(collect_roots(args, stdin), Mode.REQUIREMENTS)

        sources = SourceFetcher(config, requirements, downloader=fetcher.downloader)
        sources.download_sources(srpms)

    if args.checksums:
        write_checksums_file(sources.results, config.srpms_dir() / "SHA256SUMS")
    if not args.no_extract:
        sources.extract_sources()

    failed = sources.get_failed_downloads()
    for result in failed:
        print(f"Failed: {result.name} - {result.error}", file=sys.stderr)
    print(f"Downloaded: {len(sources.get_successful_downloads())}, Failed: {len(failed)}", file=sys.stderr)
    return 1 if failed else 0


def add_resolve_parser(subparsers, name: str, default_mode: Mode, help_text: str) -> None:
    resolve = subparsers.add_parser(name, help=help_text)
    resolve.add_argument("roots", nargs="*", help="Bundle or package names")
    resolve.add_argument(
        "-m",
        "--mode",
        choices=[m.value for m in Mode],
        default=default_mode.value,
        help=f"Dependency expansion backend (default: {default_mode.value})",
    )
    resolve.add_argument("--graph", help="DOT dependency graph for relations mode")
    resolve.add_argument("--db", help="primary.sqlite to use instead of the cached one")
    bundle_source = resolve.add_mutually_exclusive_group()
    bundle_source.add_argument("--bundles-dir", help="Directory of bundle definitions")
    bundle_source.add_argument("--bundles-archive", help="clr-bundles release tarball")
    resolve.set_defaults(func=cmd_resolve)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clr-dissector",
        description="Resolve the packages and sources behind Clear Linux bundles",
    )
    parser.add_argument("--config", help="JSON configuration file")
    parser.add_argument(
        "-v",
        "--clear-version",
        type=int,
        help="Clear Linux release (default: version of the running system)",
    )
    parser.add_argument("--repo-url", help="Base URL for downloading releases")
    parser.add_argument("--bundles-url", help="Base URL for clr-bundles release archives")
    parser.add_argument("--cache-dir", type=Path, help="Directory for downloaded release data")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress progress messages")

    subparsers = parser.add_subparsers(dest="command", required=True)

    add_resolve_parser(
        subparsers,
        "resolve",
        Mode.REQUIREMENTS,
        "Resolve bundles and packages to the full package set",
    )
    add_resolve_parser(
        subparsers,
        "bundles2packages",
        Mode.BUNDLES,
        "List the packages named by bundles",
    )

    p2p = subparsers.add_parser("packages2packages", help="Close over package requirements")
    p2p.add_argument("roots", nargs="*", help="Package names")
    p2p.add_argument("--db", help="primary.sqlite to use instead of the cached one")
    p2p.add_argument("--list", action="store_true", help="List all packages in the database")
    p2p.set_defaults(func=cmd_packages2packages)

    p2f = subparsers.add_parser("packages2files", help="Print the files shipped by packages")
    p2f.add_argument("roots", nargs="*", help="Package names")
    p2f.add_argument("--db", help="primary.sqlite to use instead of the cached one")
    p2f.add_argument("--filelists", help="filelist.sqlite to use with --db")
    p2f.set_defaults(func=cmd_packages2files)

    f2p = subparsers.add_parser("files2package", help="Print the packages that ship files")
    f2p.add_argument("roots", nargs="*", help="Absolute file paths")
    f2p.add_argument("--db", help="primary.sqlite to use instead of the cached one")
    f2p.add_argument("--filelists", help="filelist.sqlite to use with --db")
    f2p.set_defaults(func=cmd_files2package)

    graph = subparsers.add_parser("graph-deps", help="Close over an external dependency graph")
    graph.add_argument("roots", nargs="*", help="Package names")
    graph.add_argument("-f", "--file", required=True, help="Input dependency graph file")
    graph.add_argument("--list", action="store_true", help="List all packages in the graph")
    graph.set_defaults(func=cmd_graph_deps)

    p2s = subparsers.add_parser("packages2source", help="Print source RPM URLs of packages")
    p2s.add_argument("roots", nargs="*", help="Package names")
    p2s.add_argument("--db", help="primary.sqlite to use instead of the cached one")
    p2s.set_defaults(func=cmd_packages2source)

    image = subparsers.add_parser("image2bundles", help="List the bundles of an image")
    image.add_argument("-n", "--name", required=True, help="Name of the image")
    image.set_defaults(func=cmd_image2bundles)

    download_repo = subparsers.add_parser("download-repo", help="Download release metadata")
    download_repo.set_defaults(func=cmd_download_repo)

    download_sources = subparsers.add_parser(
        "download-sources",
        aliases=["dissector"],
        help="Download and unpack sources of bundles and packages",
    )
    download_sources.add_argument("roots", nargs="*", help="Bundle or package names")
    download_sources.add_argument("--all", action="store_true", help="Download all sources of the release")
    download_sources.add_argument("--checksums", action="store_true", help="Write a SHA256SUMS file")
    download_sources.add_argument("--no-extract", action="store_true", help="Only download source RPMs")
    download_sources.set_defaults(func=cmd_download_sources)

    return parser


def main(argv: list[str] | None = None, stdin: IO[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if stdin is None and argv is None:
        stdin = sys.stdin

    try:
        config = build_config(args)
        return args.func(args, config, stdin)
    except (DissectorError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

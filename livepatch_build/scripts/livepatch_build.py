#!/usr/bin/env python3
"""
Live-patch module build script.

Command-line interface that turns source patches into a loadable live-patch
kernel module for a running or prebuilt kernel.
"""

import os
import sys
import argparse
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))
from livepatch_build.errors import LivepatchBuildError
from livepatch_build.config.settings import PipelineSettings, load_settings, save_settings
from livepatch_build.pipeline.orchestrator import LivepatchPipeline


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Build a live-patch kernel module from source patches",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Patch a kernel tree that has already been built
  livepatch-build --sourcedir ~/linux fix-leak.patch

  # Fetch and cache the source for a distribution kernel first
  livepatch-build --target-version 5.14.0-70 --fetch-command get-kernel-src -- fix-leak.patch

  # Several patches in one module, custom name
  livepatch-build --sourcedir ~/linux --name cve-fixes a.patch b.patch

  # Save the options for later runs
  livepatch-build --sourcedir ~/linux --save-settings lp.json fix-leak.patch
        """
    )

    parser.add_argument('patches', nargs='*', help='Patch files, applied in order with -p1')

    source = parser.add_mutually_exclusive_group()
    source.add_argument('-s', '--sourcedir', help='Prebuilt kernel source directory')
    source.add_argument('-t', '--target-version', help='Kernel version to fetch into the cache')

    parser.add_argument('-c', '--config', help='Kernel .config (default: <sourcedir>/.config)')
    parser.add_argument('-v', '--vmlinux', help='Original vmlinux (default: <sourcedir>/vmlinux)')
    parser.add_argument('-j', '--jobs', type=int, default=0, help='Number of parallel jobs (0=auto)')
    parser.add_argument('--target', action='append', dest='targets',
                        help='Make target to build; may be repeated (default: vmlinux modules)')
    parser.add_argument('-n', '--name', help='Name of the patch module')
    parser.add_argument('-o', '--output', help='Output directory (default: current directory)')
    parser.add_argument('--oot-module', help='Out-of-tree module to patch')
    parser.add_argument('--cache-dir', help='Cache directory (default: ~/.livepatch-build)')
    parser.add_argument('--fetch-command', help='Tool invoked as "<command> <version> <dir>" to fetch source')
    parser.add_argument('--diff-compiler', help='Per-object diff compiler executable')
    parser.add_argument('--module-tool', help='Module assembly executable')
    parser.add_argument('--ld-flag', action='append', dest='extra_link_flags',
                        help='Extra flag for the final relocatable link; may be repeated')
    parser.add_argument('--make-arg', action='append', dest='extra_make_args',
                        help='Extra argument for every build pass; may be repeated')
    parser.add_argument('-d', '--debug', action='store_true', help='Keep scratch files and log everything')
    parser.add_argument('--skip-cleanup', action='store_true', help='Keep scratch files')
    parser.add_argument('--skip-gcc-check', action='store_true', help='Skip the compiler version check')
    parser.add_argument('--settings', help='Load settings from a JSON file')
    parser.add_argument('--save-settings', help='Save settings to a JSON file and exit')
    return parser


def settings_from_args(args) -> PipelineSettings:
    """Settings from an optional settings file, overridden by flags"""
    settings = load_settings(args.settings) if args.settings else PipelineSettings()

    if args.patches:
        settings.patches = args.patches
    if args.target_version:
        settings.target_version = args.target_version
        settings.source_dir = None
    if args.config:
        settings.config_file = args.config
    if args.vmlinux:
        settings.vmlinux = args.vmlinux
    if args.sourcedir:
        settings.target_version = None
        settings.use_source_dir(args.sourcedir)
    if args.jobs > 0:
        settings.jobs = args.jobs
    if args.targets:
        settings.targets = args.targets
    if args.name:
        settings.name = args.name
    if args.output:
        settings.output_dir = args.output
    if args.oot_module:
        settings.oot_module = args.oot_module
    if args.cache_dir:
        settings.cache_dir = args.cache_dir
    if args.fetch_command:
        settings.fetch_command = args.fetch_command.split()
    if args.diff_compiler:
        settings.diff_compiler = args.diff_compiler
    if args.module_tool:
        settings.module_tool = args.module_tool
    if args.extra_link_flags:
        settings.extra_link_flags = args.extra_link_flags
    if args.extra_make_args:
        settings.extra_make_args = args.extra_make_args
    if args.debug:
        settings.debug = True
    if args.skip_cleanup:
        settings.skip_cleanup = True
    if args.skip_gcc_check:
        settings.skip_gcc_check = True
    return settings


def main(argv=None) -> int:
    """Main function"""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = settings_from_args(args)
    except LivepatchBuildError as e:
        print(f"ERROR: {e}.", file=sys.stderr)
        return 1

    if args.save_settings:
        save_settings(settings, args.save_settings)
        print(f"Settings saved to: {args.save_settings}")
        return 0

    if not settings.patches:
        parser.print_help()
        return 1

    pipeline = LivepatchPipeline(settings)
    try:
        output = pipeline.run()
    except KeyboardInterrupt:
        print("\nBuild interrupted by user", file=sys.stderr)
        return 130
    except LivepatchBuildError as e:
        log_file = Path(pipeline.log_file)
        print(f"ERROR: {e}. Check {log_file} for more details.", file=sys.stderr)
        return 1

    print(f"Patch module: {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

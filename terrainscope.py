import argparse
import sys
import time

try:
    from rich.console import Console
    from rich.table import Table
    from rich.panel import Panel
    from rich.progress import Progress, SpinnerColumn, BarColumn, TextColumn
    from rich import box
except ImportError:
    print("Error: The 'rich' library is required for the CLI but not installed.", file=sys.stderr)
    print("Please install it with: pip install terrainscope[cli] (or uv sync --extra cli)", file=sys.stderr)
    sys.exit(1)

from terrainscopelib import __version__
from terrainscopelib.audio import format_duration
from terrainscopelib.config import (
    ConfigError, default_config, effective_colors, load_preset, merge_configs,
    save_preset,
)
from terrainscopelib.reports import build_summary, save_matrix
from terrainscopelib.session import AnalyzerSession

console = Console()


def positive_int(value):
    ivalue = int(value)
    if ivalue <= 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return ivalue


def positive_float(value):
    fvalue = float(value)
    if fvalue <= 0:
        raise argparse.ArgumentTypeError("must be a positive number")
    return fvalue


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(
        description="terrainscope: render an audio clip as a spectrogram terrain",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--version", action="version",
                        version=f"terrainscope {__version__}")

    parser.add_argument("source", type=str,
                        help="Audio file path or http(s) URL")

    # View
    parser.add_argument("--color", dest="colors", action="append", default=None,
                        help="Terrain color (#RRGGBB). Give twice for a low-to-high "
                             "frequency blend")
    parser.add_argument("--volume-size", type=positive_float, default=None,
                        help="Edge length of the display cube (default 10)")
    parser.add_argument("--ticks", type=positive_int, default=None,
                        help="Gridline divisions per cage axis (default 5)")
    parser.add_argument("--scan-points", type=positive_int, default=None,
                        help="Points across the scanner cross-section (default 64)")
    parser.add_argument("--timeout", type=positive_float, default=None,
                        help="HTTP timeout for URL sources in seconds (default 10)")

    # Presets
    parser.add_argument("--preset", type=str, default=None,
                        help="Load view settings from a JSON preset")
    parser.add_argument("--save-preset", type=str, default=None,
                        help="Write the effective view settings to a JSON preset")

    # Output
    parser.add_argument("--export", type=str, default=None,
                        help="Export the spectrogram matrix (.npy or .json)")
    parser.add_argument("--play", action="store_true",
                        help="Play the clip and follow the scanner")

    if argv is None and len(sys.argv) == 1:
        parser.print_help(sys.stderr)
        sys.exit(1)

    return parser.parse_args(argv)


def build_config(args):
    """Defaults, then the preset, then explicit CLI options."""
    preset = load_preset(args.preset) if args.preset else {}
    cli_overrides = {
        "colors": args.colors,
        "volume_size": args.volume_size,
        "tick_count": args.ticks,
        "scan_points": args.scan_points,
        "fetch_timeout": args.timeout,
    }
    return merge_configs(default_config(), preset, cli_overrides)


# ---------------------------------------------------------------------------
# Rich console rendering (CLI-only, not in the library)
# ---------------------------------------------------------------------------

def print_summary(summary):
    table = Table(box=box.ROUNDED, title="Spectrogram Terrain", title_justify="left")
    table.add_column("Property", style="cyan")
    table.add_column("Value", justify="right", style="bold")

    table.add_row("Duration",
                  format_duration(summary["samples"], summary["samplerate"]))
    table.add_row("Sample rate", f"{summary['samplerate']} Hz")
    table.add_row("Matrix", f"{summary['shape'][0]} x {summary['shape'][1]}")
    table.add_row("Max / mean", f"{summary['max']:.2f} / {summary['mean']:.2f}")
    table.add_row("Peak cell",
                  f"{summary['peak_time']:.2f} s (frame {summary['peak_frame']}), "
                  f"bin {summary['peak_bin']} "
                  f"(~{summary['peak_hz']:.0f} Hz)")
    if "vertices" in summary:
        table.add_row("Height range",
                      f"{summary['height_min']:.2f} .. {summary['height_max']:.2f}")
        table.add_row("Mesh", f"{summary['vertices']} vertices, "
                              f"{summary['triangles']} triangles")
    if summary["max"] == 0:
        table.add_row("Note", "[yellow]clip is silent, terrain is flat[/]")
    console.print(table)


def play_with_scanner(session):
    """Play the loaded clip and show scanner progress until it finishes."""
    try:
        import sounddevice as sd
    except OSError as e:
        console.print(f"[bold red]Error:[/] audio output unavailable ({e})")
        return False

    pcm = session.pcm
    try:
        sd.play(pcm.samples, pcm.samplerate)
    except sd.PortAudioError as e:
        console.print(f"[bold red]Error:[/] {e}")
        return False
    session.play(time.monotonic())

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        task_id = progress.add_task("[cyan]Playing...", total=1.0)
        try:
            while True:
                state = session.tick(time.monotonic())
                if state.scanner.finished or not session.is_playing:
                    progress.update(task_id, completed=1.0)
                    break
                progress.update(
                    task_id, completed=state.scanner.progress,
                    description=f"[cyan]Playing[/] row {state.scanner.time_index:3d}")
                time.sleep(1 / 30)
        except KeyboardInterrupt:
            session.stop()
        finally:
            sd.stop()
    return True


# ---------------------------------------------------------------------------
# main()
# ---------------------------------------------------------------------------

def main(argv=None):
    args = parse_arguments(argv)

    try:
        config = build_config(args)
        session = AnalyzerSession(config)
    except ConfigError as e:
        console.print(f"[bold red]Error:[/] {e}")
        return 1

    if args.save_preset:
        save_preset(config, args.save_preset,
                    description=f"terrainscope {__version__}")
        console.print(f"[dim]Preset saved to: {args.save_preset}[/]")

    colors = effective_colors(config)
    console.print(Panel.fit(
        f"[bold]terrainscope[/] {__version__}\n"
        f"Source: [cyan]{args.source}[/]\n"
        f"Volume: [cyan]{config['volume_size']:g}[/] | "
        f"Ticks: [cyan]{config['tick_count']}[/] | "
        f"Scan points: [cyan]{config['scan_points']}[/]\n"
        f"Colors: [green]{', '.join(colors)}[/]",
        title="Configuration"
    ))

    failures = []
    session.event_bus.subscribe(
        "load.failed", lambda generation, source, error: failures.append(error))

    with session:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task("[cyan]Loading & analyzing...", total=None)
            session.load(args.source)
            session.wait()

        if failures:
            console.print(f"[bold red]Error:[/] {failures[-1]}")
            return 1

        state = session.tick()
        print_summary(build_summary(state.pcm, state.matrix, state.terrain))

        if args.export:
            try:
                path = save_matrix(args.export, state.matrix, state.pcm)
            except (ValueError, OSError) as e:
                console.print(f"[bold red]Error:[/] {e}")
                return 1
            console.print(f"\n[dim]Matrix exported to: {path}[/]")

        if args.play and not play_with_scanner(session):
            return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
structure-segmenter - Command Line Interface

Main entry point for running hierarchical structure analysis on audio tracks.
"""

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

import config
from segmenter import export, synthetic
from segmenter.analysis_params import (
    AnalysisConfig,
    FilterBandParams,
    FrameParams,
    LevelParams,
)
from segmenter.audio_io import AudioSource
from segmenter.session import AnalysisSession


def build_config(args: argparse.Namespace) -> AnalysisConfig:
    """
    Build an AnalysisConfig from defaults and command line overrides.

    Parameters:
        args: Parsed arguments

    Returns:
        AnalysisConfig (validated when the session runs)
    """
    cfg = AnalysisConfig.from_defaults()

    frame = FrameParams(
        frame_size=args.frame_size or cfg.frame.frame_size,
        overlap=args.overlap if args.overlap is not None else cfg.frame.overlap
    )
    band = FilterBandParams(
        lower_hz=args.lower_hz if args.lower_hz is not None else cfg.band.lower_hz,
        upper_hz=args.upper_hz if args.upper_hz is not None else cfg.band.upper_hz
    )
    skip = set(args.skip_level or [])
    levels = LevelParams(
        macro='macro' not in skip,
        meso='meso' not in skip,
        micro='micro' not in skip
    )

    changes = {'frame': frame, 'band': band, 'levels': levels}
    if args.extractors:
        changes['extractors'] = tuple(args.extractors)
    if args.workers is not None:
        changes['n_workers'] = args.workers
    return replace(cfg, **changes)


def analyze_source(
    source: AudioSource,
    output_dir: Path,
    cfg: AnalysisConfig,
    generate_plots: bool = True,
    verbose: bool = False
) -> int:
    """
    Run one analysis and export its outputs.

    Returns:
        Number of files created
    """
    session = AnalysisSession()
    if verbose:
        session.add_started_callback(lambda: print("   Analysis started"))
        session.add_done_callback(lambda: print("   Analysis finished"))
    session.run(source, cfg)

    created_files = export.export_all_outputs(
        session, output_dir, source.name, generate_plots=generate_plots
    )
    if verbose:
        print(f"   Created {len(created_files)} output files")

    summary_path = output_dir / f"{source.name}_summary.json"
    with open(summary_path) as f:
        summary = json.load(f)
    export.print_analysis_summary(summary, source.name)
    return len(created_files)


def process_single_track(
    file_path: Path,
    output_dir: Path,
    cfg: AnalysisConfig,
    target_sr: Optional[int] = None,
    generate_plots: bool = True,
    verbose: bool = False
) -> bool:
    """
    Process a single audio track through the full pipeline.

    Parameters:
        file_path: Path to audio file
        output_dir: Output directory for results
        cfg: Analysis configuration
        target_sr: Resample to this rate (None = native)
        generate_plots: Write the PNG report
        verbose: Print verbose progress messages

    Returns:
        True if successful, False otherwise
    """
    try:
        if verbose:
            print(f"\nProcessing: {file_path.name}")
            print("-" * 60)

        source = AudioSource.from_file(file_path, target_sr=target_sr)
        if verbose:
            print(f"   Duration: {source.duration:.2f}s, Sample rate: {source.sample_rate} Hz")

        analyze_source(source, output_dir, cfg, generate_plots, verbose)
        return True

    except Exception as e:
        print(f"ERROR processing {file_path.name}: {e}", file=sys.stderr)
        if verbose:
            import traceback
            traceback.print_exc()
        return False


def process_directory(
    input_dir: Path,
    output_dir: Path,
    cfg: AnalysisConfig,
    target_sr: Optional[int] = None,
    generate_plots: bool = True,
    verbose: bool = False
) -> dict:
    """
    Process all audio files in a directory.

    Returns:
        Dict with success/failure counts
    """
    audio_extensions = ['.wav', '.mp3', '.flac', '.ogg', '.m4a']
    audio_files = set()

    for ext in audio_extensions:
        audio_files.update(input_dir.glob(f'*{ext}'))
        audio_files.update(input_dir.glob(f'*{ext.upper()}'))

    if not audio_files:
        print(f"No audio files found in {input_dir}")
        return {'success': 0, 'failed': 0}

    print(f"Found {len(audio_files)} audio files")

    success_count = 0
    failed_count = 0

    for audio_file in sorted(audio_files):
        track_output_dir = output_dir / audio_file.stem
        if process_single_track(audio_file, track_output_dir, cfg, target_sr,
                                generate_plots, verbose):
            success_count += 1
        else:
            failed_count += 1

    print(f"\nProcessing complete: {success_count} successful, {failed_count} failed")

    return {'success': success_count, 'failed': failed_count}


def run_demo_mode(output_dir: Path, cfg: AnalysisConfig, generate_plots: bool = True,
                  verbose: bool = False) -> bool:
    """
    Run demo mode using synthetic test tracks.

    Returns:
        True if successful
    """
    print("Running demo mode with synthetic audio...")

    sr = 22050
    test_tracks = [
        ('demo_contrast', synthetic.generate_section_contrast(duration=40, sr=sr)[0],
         'Two contrasting sections'),
        ('demo_aba', synthetic.generate_aba_form(section_sec=20, sr=sr)[0],
         'A-B-A form'),
        ('demo_nested', synthetic.generate_nested_form(sr=sr)[0],
         'Two sections of alternating phrases'),
    ]

    print(f"Generated {len(test_tracks)} synthetic test tracks")

    for name, audio, description in test_tracks:
        print(f"\nProcessing: {name} ({description})")
        print("-" * 60)

        try:
            source = AudioSource.from_array(audio, sr, name=name)
            track_output_dir = output_dir / name
            n_files = analyze_source(source, track_output_dir, cfg, generate_plots, verbose)
            print(f"Created {n_files} output files in {track_output_dir}")

        except Exception as e:
            print(f"ERROR: {e}", file=sys.stderr)
            if verbose:
                import traceback
                traceback.print_exc()
            return False

    print(f"\nDemo complete! Results saved to {output_dir}")
    return True


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description='structure-segmenter - Hierarchical audio structure analysis',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze single file
  %(prog)s track.wav --output results/

  # Analyze directory with MFCC and constant-Q features
  %(prog)s tracks/ --output results/ --extractors mfcc cqt

  # Run demo mode
  %(prog)s --demo --output demo_results/

  # Verbose output
  %(prog)s track.wav --output results/ --verbose
        """
    )

    parser.add_argument(
        'input',
        nargs='?',
        type=str,
        help='Input audio file or directory (not needed for --demo)'
    )

    parser.add_argument(
        '--output', '-o',
        type=str,
        required=True,
        help='Output directory for results'
    )

    parser.add_argument(
        '--demo',
        action='store_true',
        help='Run demo mode with synthetic test tracks (no input file needed)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Print verbose progress messages'
    )

    parser.add_argument(
        '--no-plots',
        action='store_true',
        help='Skip plot generation'
    )

    # Parameter overrides
    parser.add_argument(
        '--extractors',
        nargs='+',
        choices=['mfcc', 'cqt', 'autocorrelation'],
        help=f'Feature extractors to enable (default: {" ".join(config.ENABLED_EXTRACTORS)})'
    )

    parser.add_argument(
        '--frame-size',
        type=int,
        help=f'Frame size in samples (default: {config.FRAME_SIZE})'
    )

    parser.add_argument(
        '--overlap',
        type=int,
        help=f'Frame overlap in samples (default: {config.OVERLAP})'
    )

    parser.add_argument(
        '--lower-hz',
        type=float,
        help=f'Lower filter frequency in Hz (default: {config.LOWER_FILTER_FREQ})'
    )

    parser.add_argument(
        '--upper-hz',
        type=float,
        help=f'Upper filter frequency in Hz (default: {config.UPPER_FILTER_FREQ})'
    )

    parser.add_argument(
        '--skip-level',
        action='append',
        choices=['macro', 'meso', 'micro'],
        help='Do not detect this level (repeatable)'
    )

    parser.add_argument(
        '--workers',
        type=int,
        help=f'Worker threads for the similarity matrix (default: {config.N_WORKERS} = auto)'
    )

    parser.add_argument(
        '--target-sr',
        type=int,
        help='Resample input to this rate (default: native rate)'
    )

    args = parser.parse_args()

    # Validate arguments
    if not args.demo and not args.input:
        parser.error("Either provide an input file/directory or use --demo")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s'
    )

    cfg = build_config(args)
    output_dir = Path(args.output)
    generate_plots = not args.no_plots

    # Run appropriate mode
    if args.demo:
        success = run_demo_mode(output_dir, cfg, generate_plots, args.verbose)
        sys.exit(0 if success else 1)

    else:
        input_path = Path(args.input)

        if not input_path.exists():
            print(f"ERROR: Input path does not exist: {input_path}", file=sys.stderr)
            sys.exit(1)

        if input_path.is_file():
            success = process_single_track(input_path, output_dir, cfg, args.target_sr,
                                           generate_plots, args.verbose)
            sys.exit(0 if success else 1)

        elif input_path.is_dir():
            results = process_directory(input_path, output_dir, cfg, args.target_sr,
                                        generate_plots, args.verbose)
            sys.exit(0 if results['failed'] == 0 else 1)

        else:
            print(f"ERROR: Invalid input path: {input_path}", file=sys.stderr)
            sys.exit(1)


if __name__ == '__main__':
    main()

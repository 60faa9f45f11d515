"""
Export Module

Generate JSON outputs and plots for segmentation results.
All outputs follow versioned schema for consistency.
"""

import json
from pathlib import Path
from typing import Dict, List

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt
import numpy as np

import config
from segmenter import timebase
from segmenter.similarity import similarity_summary


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy types."""
    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        elif isinstance(obj, np.floating):
            return float(obj)
        elif isinstance(obj, np.ndarray):
            return obj.tolist()
        elif isinstance(obj, np.bool_):
            return bool(obj)
        return super().default(obj)


def create_structure_json(session) -> Dict:
    """
    Create complete structure JSON following schema.

    Parameters:
        session: AnalysisSession with a published result

    Returns:
        Structure dict ready for JSON serialization
    """
    summary = session.summary()
    result = session.segmentation
    n_frames = result.n_frames

    summary['track']['time_axis_info'] = {
        'n_frames': n_frames,
        'frame_duration_sec': result.duration / n_frames if n_frames else 0.0,
        'time_axis_valid': all(
            0.0 <= t <= result.duration + timebase.EPSILON_SEC
            for level in result.levels for t in result.times[level]
        )
    }
    summary['similarity'] = similarity_summary(session.similarity_matrix)
    return {'schema_version': config.SCHEMA_VERSION, **summary}


def create_novelty_json(session) -> Dict:
    """
    Novelty curves with their time axis.

    Parameters:
        session: AnalysisSession with a published result

    Returns:
        Dict with one entry per computed level
    """
    result = session.segmentation
    frame_duration = result.duration / result.n_frames
    return {
        'schema_version': config.SCHEMA_VERSION,
        'max_scale': session.similarity_matrix.max_scale,
        'curves': {
            level: {
                'values': curve,
                'start_time_sec': 0.0,
                'sampling_interval_sec': frame_duration,
                'n_samples': len(curve)
            }
            for level, curve in session.novelty_curves.items()
        }
    }


def create_summary_json(structure_json: Dict) -> Dict:
    """
    Create summary JSON with key statistics.

    Parameters:
        structure_json: Full structure JSON from create_structure_json

    Returns:
        Summary dict with top-level stats
    """
    levels = structure_json['segmentation']['levels']
    per_level = {}
    for level, data in levels.items():
        durations = [s['duration'] for s in data['segments']]
        per_level[level] = {
            'num_segments': len(durations),
            'mean_segment_sec': float(np.mean(durations)) if durations else 0.0,
            'shortest_segment_sec': float(min(durations)) if durations else 0.0,
            'longest_segment_sec': float(max(durations)) if durations else 0.0,
            'boundaries': data['boundaries']
        }

    return {
        'schema_version': config.SCHEMA_VERSION,
        'duration_sec': structure_json['track']['duration_sec'],
        'extractors': structure_json['parameters']['extractors'],
        'levels': per_level
    }


def save_json(data: Dict, output_path: Path) -> None:
    """
    Save data as JSON with pretty printing.

    Parameters:
        data: Dictionary to save
        output_path: Path to output file
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w') as f:
        json.dump(data, f, indent=2, cls=NumpyEncoder)


def plot_structure(session, output_path: Path, title: str = "Structure Analysis") -> None:
    """
    Plot the similarity matrix above one novelty row per level.

    Parameters:
        session: AnalysisSession with a published result
        output_path: Path to save plot
        title: Plot title
    """
    result = session.segmentation
    matrix = session.similarity_matrix
    curves = session.novelty_curves
    levels = [level for level in result.levels if level in curves]
    times = timebase.compute_frame_time_axis(result.n_frames, result.duration)

    fig, axes = plt.subplots(
        1 + len(levels), 1, figsize=config.PLOT_FIGSIZE,
        gridspec_kw={'height_ratios': [3] + [1] * len(levels)},
        squeeze=False
    )
    axes = axes[:, 0]

    # Plot 1: Similarity matrix
    ax = axes[0]
    im = ax.imshow(matrix.to_dense(), origin='lower', cmap='magma',
                   extent=(0, result.duration, 0, result.duration),
                   vmin=0.0, vmax=matrix.max_scale, aspect='auto')
    finest = result.levels[-1] if result.levels else None
    if finest is not None:
        for t in result.times[finest]:
            ax.axvline(t, color=config.LEVEL_COLORS[finest], alpha=0.3, linewidth=0.8)
    for t in result.times.get('macro', ()):
        ax.axvline(t, color=config.LEVEL_COLORS['macro'], alpha=0.8, linewidth=1.5)
        ax.axhline(t, color=config.LEVEL_COLORS['macro'], alpha=0.8, linewidth=1.5)
    ax.set_ylabel('Time (seconds)', fontsize=10)
    ax.set_title(title, fontsize=12, fontweight='bold')
    fig.colorbar(im, ax=ax, label='Similarity')

    # One row per level: novelty curve and boundaries
    for ax, level in zip(axes[1:], levels):
        color = config.LEVEL_COLORS[level]
        ax.plot(times, curves[level], color=color, linewidth=1.5, label=f'{level} novelty')
        for t in result.times[level]:
            ax.axvline(t, color=color, alpha=0.6, linestyle='--', linewidth=1)
        ax.set_xlim(0, result.duration)
        ax.set_ylabel('Novelty', fontsize=10)
        ax.legend(loc='upper right', fontsize=8)
        ax.grid(True, alpha=0.3)

    axes[-1].set_xlabel('Time (seconds)', fontsize=10)
    plt.tight_layout()

    # Save plot
    output_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(output_path, dpi=config.PLOT_DPI, bbox_inches='tight')
    plt.close(fig)


def export_all_outputs(
    session,
    output_dir: Path,
    track_name: str,
    generate_plots: bool = True
) -> List[Path]:
    """
    Export all outputs: JSON files and plots.

    Parameters:
        session: AnalysisSession with a published result
        output_dir: Output directory path
        track_name: Name of track (for filenames)
        generate_plots: Whether to generate plot files

    Returns:
        List of paths to created files
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    created_files = []

    structure_json = create_structure_json(session)
    structure_path = output_dir / f"{track_name}_structure.json"
    save_json(structure_json, structure_path)
    created_files.append(structure_path)

    novelty_path = output_dir / f"{track_name}_novelty.json"
    save_json(create_novelty_json(session), novelty_path)
    created_files.append(novelty_path)

    summary_path = output_dir / f"{track_name}_summary.json"
    save_json(create_summary_json(structure_json), summary_path)
    created_files.append(summary_path)

    if generate_plots:
        plot_path = output_dir / f"{track_name}_structure.png"
        plot_structure(session, plot_path, title=f"Structure Analysis: {track_name}")
        created_files.append(plot_path)

    return created_files


def print_analysis_summary(summary_json: Dict, track_name: str) -> None:
    """
    Print concise analysis summary to console.

    Parameters:
        summary_json: Summary JSON dict
        track_name: Track name
    """
    print(f"\n{'='*60}")
    print(f"Structure Summary: {track_name}")
    print(f"{'='*60}")
    print(f"Duration: {summary_json['duration_sec']:.2f} seconds")
    print(f"Extractors: {', '.join(summary_json['extractors'])}")

    for level, stats in summary_json['levels'].items():
        print(f"\n{level.capitalize()}: {stats['num_segments']} segments "
              f"(mean {stats['mean_segment_sec']:.1f}s)")
        if stats['boundaries']:
            shown = ', '.join(f"{t:.1f}" for t in stats['boundaries'][:12])
            more = ' ...' if len(stats['boundaries']) > 12 else ''
            print(f"  Boundaries (s): {shown}{more}")

    print(f"{'='*60}\n")

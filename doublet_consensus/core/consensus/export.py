"""Export functions for the consensus module.

Provides:
- export_cell_labels: Per-cell label table
- export_cluster_summary: Per-cluster statistics table
- export_json: Full structured output
- export_markdown: Human-readable report
- export_provenance: Audit trail
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd

from ... import __version__
from ...io.csv import write_dataframe
from .engine import ConsensusResult, MultiSampleResult

ResultLike = Union[ConsensusResult, MultiSampleResult]


def _cell_table(result: ResultLike) -> pd.DataFrame:
    if isinstance(result, MultiSampleResult):
        return result.combined_cell_labels()
    table = result.cell_labels.reset_index()
    table.insert(0, "sample_id", result.sample_id)
    return table


def _cluster_table(result: ResultLike) -> pd.DataFrame:
    if isinstance(result, MultiSampleResult):
        return result.combined_cluster_summary()
    table = result.clusters.to_frame()
    table.insert(0, "sample_id", result.sample_id)
    return table


def export_cell_labels(
    result: ResultLike,
    output_path: Path,
    columns: Optional[List[str]] = None,
) -> Path:
    """Export per-cell labels to CSV/TSV.

    Parameters
    ----------
    result : ConsensusResult or MultiSampleResult
        Consensus result
    output_path : Path
        Output file path
    columns : List[str], optional
        Subset of columns to write (all when omitted)

    Returns
    -------
    Path
        Path to created file
    """
    table = _cell_table(result)
    if columns is not None:
        table = table[columns]
    return write_dataframe(table, output_path)


def export_cluster_summary(result: ResultLike, output_path: Path) -> Path:
    """Export per-cluster statistics to CSV/TSV."""
    return write_dataframe(_cluster_table(result), output_path)


def export_json(result: ResultLike, output_path: Path) -> Path:
    """Export consensus result to JSON file.

    Parameters
    ----------
    result : ConsensusResult or MultiSampleResult
        Consensus result
    output_path : Path
        Output file path

    Returns
    -------
    Path
        Path to created file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    data = result.to_dict()
    data["export_timestamp"] = datetime.now().isoformat()
    data["export_version"] = __version__

    with open(output_path, "w") as f:
        json.dump(data, f, indent=2, default=str)

    return output_path


def export_markdown(result: ResultLike, output_path: Path) -> Path:
    """Export consensus result to Markdown report.

    Parameters
    ----------
    result : ConsensusResult or MultiSampleResult
        Consensus result
    output_path : Path
        Output file path

    Returns
    -------
    Path
        Path to created file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if isinstance(result, MultiSampleResult):
        lines = _format_multi_sample_report(result)
    else:
        lines = _format_single_sample_report(result)

    with open(output_path, "w") as f:
        f.write("\n".join(lines))

    return output_path


def _format_fold_change(value: float) -> str:
    return "undefined" if np.isnan(value) else f"{value:.2f}"


def _format_sample_section(result: ConsensusResult, heading: str = "##") -> List[str]:
    """Summary, cluster table and conditions of one sample."""
    t = result.thresholds
    lines = [
        f"{heading} Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Cells | {result.n_cells:,} |",
        f"| Joined | {result.n_joined:,} |",
        f"| Doublet | {result.n_doublet:,} |",
        f"| Singlet | {result.n_singlet:,} |",
        f"| Unclassified | {result.n_unclassified:,} |",
        f"| Doublet rate | {100.0 * result.doublet_rate:.2f}% |",
        "",
        f"- Detectors: {', '.join(result.detectors)}",
        f"- Thresholds: candidate >= {t.candidate_threshold}, "
        f"fold change >= {t.fold_change_threshold}, "
        f"final vote >= {t.final_vote_threshold}",
        f"- Global candidate percent: "
        f"{result.clusters.global_candidate_percent:.2f}%",
        "",
        f"{heading} Clusters",
        "",
        "| Cluster | Cells | Imbalanced | Candidates | Candidate % | Fold change | Label |",
        "|---------|-------|------------|------------|-------------|-------------|-------|",
    ]

    for s in result.clusters.summaries:
        marker = f"**{s.cluster_label}**" if s.is_doublet else str(s.cluster_label)
        lines.append(
            f"| {s.cluster_id} | {s.cell_count} | {s.imbalanced_count} | "
            f"{s.candidate_count} | {s.candidate_percent:.1f} | "
            f"{_format_fold_change(s.fold_change)} | {marker} |"
        )
    lines.append("")

    if result.conditions:
        lines.extend([f"{heading} Data Conditions", ""])
        for condition in result.conditions:
            lines.append(f"- `{condition.code}`: {condition.message}")
        lines.append("")

    return lines


def _format_single_sample_report(result: ConsensusResult) -> List[str]:
    """Format single-sample report."""
    lines = [
        "# Doublet Consensus Report",
        "",
        f"**Sample**: `{result.sample_id}`",
        f"**Generated**: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Execution Time**: {result.execution_time_seconds:.2f}s",
        "",
    ]
    lines.extend(_format_sample_section(result))
    return lines


def _format_multi_sample_report(result: MultiSampleResult) -> List[str]:
    """Format multi-sample comparison report."""
    lines = [
        "# Doublet Consensus Report (Multi-Sample)",
        "",
        f"**Generated**: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Execution Time**: {result.total_execution_time_seconds:.2f}s",
        "",
        "## Sample Comparison",
        "",
        "| Sample | Cells | Doublet | Singlet | Unclassified | Doublet clusters |",
        "|--------|-------|---------|---------|--------------|------------------|",
    ]

    for sample_id in result.samples_processed:
        r = result.results[sample_id]
        lines.append(
            f"| `{sample_id}` | {r.n_cells:,} | {r.n_doublet:,} | {r.n_singlet:,} | "
            f"{r.n_unclassified:,} | {r.clusters.n_doublet_clusters} |"
        )
    lines.append("")

    for sample_id in result.samples_processed:
        lines.extend(["---", "", f"## {sample_id}", ""])
        lines.extend(_format_sample_section(result.results[sample_id], heading="###"))

    return lines


def export_provenance(
    result: ResultLike,
    output_path: Path,
    config_path: Optional[Path] = None,
) -> Path:
    """Export provenance information for audit trail.

    Parameters
    ----------
    result : ConsensusResult or MultiSampleResult
        Consensus result
    output_path : Path
        Output file path
    config_path : Path, optional
        Config file used

    Returns
    -------
    Path
        Path to created file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    provenance = {
        "export_timestamp": datetime.now().isoformat(),
        "export_version": __version__,
        "config_path": str(config_path) if config_path else None,
    }

    if isinstance(result, MultiSampleResult):
        provenance["type"] = "multi_sample"
        provenance["samples_processed"] = result.samples_processed
        provenance["sources"] = {
            sample_id: r.source_counts for sample_id, r in result.results.items()
        }
        provenance["thresholds"] = {
            sample_id: r.thresholds.to_dict() for sample_id, r in result.results.items()
        }
        provenance["execution_time_seconds"] = result.total_execution_time_seconds
    else:
        provenance["type"] = "single_sample"
        provenance["sample_id"] = result.sample_id
        provenance["detectors"] = result.detectors
        provenance["sources"] = result.source_counts
        provenance["thresholds"] = result.thresholds.to_dict()
        provenance["execution_time_seconds"] = result.execution_time_seconds

    with open(output_path, "w") as f:
        json.dump(provenance, f, indent=2)

    return output_path


def export_all(
    result: ResultLike,
    output_dir: Path,
    config_path: Optional[Path] = None,
) -> Dict[str, Path]:
    """Export all consensus outputs.

    Parameters
    ----------
    result : ConsensusResult or MultiSampleResult
        Consensus result
    output_dir : Path
        Output directory
    config_path : Path, optional
        Config file used

    Returns
    -------
    Dict[str, Path]
        Map of output type to file path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    outputs = {}
    outputs["cell_labels"] = export_cell_labels(result, output_dir / "cell_labels.csv")
    outputs["cluster_summary"] = export_cluster_summary(
        result, output_dir / "cluster_summary.csv"
    )
    outputs["json"] = export_json(result, output_dir / "consensus_result.json")
    outputs["markdown"] = export_markdown(result, output_dir / "consensus_report.md")
    outputs["provenance"] = export_provenance(
        result, output_dir / "provenance.json", config_path
    )

    return outputs

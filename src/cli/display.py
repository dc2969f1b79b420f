"""CLI display utilities using Rich.

Provides console output for:
- Run header and stage progress
- Retry/fallback notices
- Hypothesis cards with audit scores
- Run summary tables
"""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from src.contracts.schemas import EventKind, Hypothesis, RefinementOutcome, SynthesisResult, TelemetryEvent

console = Console()


EVENT_STYLES = {
    EventKind.STAGE_STARTED: ("▶", "bold yellow"),
    EventKind.STAGE_COMPLETED: ("✔", "green"),
    EventKind.STAGE_SKIPPED: ("↷", "dim"),
    EventKind.RETRY: ("↻", "yellow"),
    EventKind.FALLBACK: ("⇄", "magenta"),
    EventKind.HYPOTHESIS_GENERATED: ("✦", "cyan"),
    EventKind.HYPOTHESIS_REFUTED: ("✘", "red"),
    EventKind.HYPOTHESIS_APPROVED: ("★", "bold green"),
}


def print_header(sources: list[str]) -> None:
    """Print run header."""
    console.print()
    console.print(Panel(
        "[bold white]Sources:[/bold white] " + ", ".join(sources),
        title="🧪 [bold cyan]Crucible - Hypothesis Synthesis[/bold cyan] 🧪",
        border_style="cyan",
    ))
    console.print()


def print_event(event: TelemetryEvent, verbose: bool = False) -> None:
    """Print a telemetry event. Progress events are shown only when verbose."""
    if event.kind is EventKind.STAGE_PROGRESS and not verbose:
        return
    if event.kind is EventKind.HYPOTHESIS_GENERATED and not verbose:
        return

    icon, style = EVENT_STYLES.get(event.kind, ("·", "dim"))
    stage = event.stage.value if event.stage else event.operation or ""
    console.print(f"  [{style}]{icon} {stage}[/{style}] [dim]{event.detail}[/dim]")


def print_hypothesis_card(hypothesis: Hypothesis, index: int, outcome: RefinementOutcome | None = None) -> None:
    """Print a single hypothesis as a card."""
    verdict = outcome.final_verdict if outcome else None
    approved = bool(outcome and outcome.converged)

    content = [f"[bold]{hypothesis.thesis}[/bold]", ""]
    if hypothesis.mechanism:
        content.append(f"[dim]Mechanism:[/dim] {hypothesis.mechanism[:200]}")
    if hypothesis.prediction:
        content.append(f"[dim]Prediction:[/dim] {hypothesis.prediction[:200]}")
    if hypothesis.crucial_experiment:
        content.append(f"[dim]Crucial experiment:[/dim] {hypothesis.crucial_experiment[:200]}")
    content.append("")

    conf_style = "green" if hypothesis.confidence >= 70 else "yellow" if hypothesis.confidence >= 40 else "red"
    line = f"Confidence: [{conf_style}]{hypothesis.confidence}[/]"
    if verdict:
        line += f" | Validity: {verdict.validity_score} | Iterations: {len(outcome.verdicts)}"
    content.append(line)

    if outcome and outcome.error:
        content.append(f"[red]Refinement failed:[/red] {outcome.error[:200]}")
    for violation in hypothesis.constraint_violations:
        content.append(f"[red]⚠ {violation}[/red]")
    if hypothesis.prose:
        content.extend(["", hypothesis.prose])

    console.print(Panel(
        "\n".join(content),
        title=f"{'★' if approved else '○'} Hypothesis {index + 1}",
        border_style="green" if approved else "yellow",
    ))


def print_summary_table(result: SynthesisResult) -> None:
    """Print run statistics as a table."""
    table = Table(title="Run Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    conv = result.convergence
    table.add_row("Sources", str(len(result.sources)))
    table.add_row("Contradictions", str(len(result.contradictions)))
    table.add_row("Acceptance rate", f"{result.exploration_acceptance_rate:.0%}")
    table.add_row("Basis-trap expansion", "yes" if result.expansion_triggered else "no")
    table.add_row("Gate rejections", str(len(result.gate_rejections)))
    table.add_row("Refined", str(conv.total_refinements))
    table.add_row("Converged", str(conv.converged_count))
    if conv.mean_convergence_step is not None:
        table.add_row("Mean convergence step", f"{conv.mean_convergence_step:.2f}")
    table.add_row("Peak concurrency", str(conv.peak_concurrency))
    table.add_row("Below novelty threshold", str(len(result.below_novelty_threshold)))
    if result.spectral_metrics:
        table.add_row("λ_min / threshold", f"{result.spectral_metrics.lambda_min:.4f} / {result.spectral_metrics.threshold:.4f}")
    table.add_row("Cost (USD)", f"${result.total_cost_usd:.4f}")

    console.print(table)


def print_final_results(result: SynthesisResult, top: int = 5) -> None:
    """Print final run results."""
    console.print()
    print_summary_table(result)

    if not result.hypotheses:
        console.print("\n[yellow]No hypotheses survived the run.[/yellow]")
        return

    outcomes = {o.hypothesis.id: o for o in result.outcomes}
    console.print("\n[bold]Top Hypotheses:[/bold]\n")
    for i, h in enumerate(result.hypotheses[:top]):
        print_hypothesis_card(h, i, outcomes.get(h.id))

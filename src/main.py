"""Main CLI entry point for Crucible."""

import asyncio
import os
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.console import Console

from src.cli.display import print_event, print_final_results, print_header
from src.contracts.errors import PipelineCancelledError
from src.contracts.schemas import MCMCConfig, RetryConfig, SourceDocument, SynthesisConfig

load_dotenv()

app = typer.Typer(
    name="crucible",
    help="Crucible - audited hypothesis synthesis across source documents",
    add_completion=False,
)
console = Console()

API_KEY_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "GROQ_API_KEY", "CEREBRAS_API_KEY")


def load_documents(paths: list[Path]) -> list[SourceDocument]:
    """Read text files into SourceDocuments named after the file."""
    documents = []
    for path in paths:
        text = path.read_text(encoding="utf-8", errors="replace")
        documents.append(SourceDocument(name=path.stem, text=text, metadata={"path": str(path)}))
    return documents


@app.command()
def run(
    sources: list[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Source documents (text)"),
    reference: list[Path] = typer.Option([], "--reference", "-r", exists=True, dir_okay=False, help="Prior-art documents"),
    focus: str | None = typer.Option(None, "--focus", "-f", help="Research focus"),
    domain: str | None = typer.Option(None, "--domain", "-d", help="Constraint domain (scaling_laws, education)"),
    iterations: int = typer.Option(2, "--iterations", "-i", help="Maximum refinement iterations"),
    samples: int = typer.Option(10, "--samples", "-n", help="MCMC samples"),
    concurrency: int = typer.Option(3, "--concurrency", "-p", help="Parallel audits"),
    max_ideas: int | None = typer.Option(None, "--max-ideas", help="Cap on hypotheses sent to refinement"),
    novelty_threshold: float = typer.Option(0.30, "--novelty-threshold", help="Minimum prior-art distance"),
    max_attempts: int = typer.Option(3, "--max-attempts", help="Retry attempts per call"),
    no_prose: bool = typer.Option(False, "--no-prose", help="Skip prose write-ups"),
    output_dir: Path = typer.Option(Path("./runs"), "--output", "-o", help="Output directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Synthesize audited hypotheses from source documents.

    Example:
        crucible run paper_a.txt paper_b.txt --focus "energy efficiency of inference"
    """
    if not any(os.getenv(var) for var in API_KEY_VARS):
        console.print("[red]Error:[/red] no LLM API key set.")
        console.print(f"Set one of {', '.join(API_KEY_VARS)} in your environment or .env file.")
        raise typer.Exit(1)

    try:
        config = SynthesisConfig(
            max_refinement_iterations=iterations,
            novelty_threshold=novelty_threshold,
            parallel_concurrency=concurrency,
            max_novel_ideas=max_ideas,
            generate_prose=not no_prose,
            research_focus=focus,
            domain=domain,
            retry=RetryConfig(max_attempts=max_attempts),
            mcmc=MCMCConfig(num_samples=samples, burn_in=min(2, samples - 1)),
        )
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(2)

    documents = load_documents(sources)
    references = load_documents(reference)
    print_header([d.name for d in documents])

    async def _run() -> None:
        from src.kb.vector_store import InMemoryVectorStore
        from src.ralph.orchestrator import SynthesisOrchestrator

        store = InMemoryVectorStore(persist_path=output_dir / "vector_store.json")
        orchestrator = SynthesisOrchestrator(
            config,
            vector_store=store,
            callbacks={"on_event": lambda event: print_event(event, verbose)},
        )
        result = await orchestrator.run(documents, references, output_dir)
        print_final_results(result)
        console.print(f"\n[dim]Run saved to: {output_dir / result.run_id}[/dim]")

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Run interrupted by user[/yellow]")
        raise typer.Exit(0)
    except PipelineCancelledError as e:
        console.print(f"\n[yellow]{e}[/yellow]")
        raise typer.Exit(0)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        if verbose:
            import traceback
            console.print(traceback.format_exc())
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    from src import __version__
    console.print(f"[bold]Crucible[/bold] v{__version__}")
    console.print("Hypothesis Synthesis Orchestrator")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()

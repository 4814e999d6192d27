"""
Schedule & Screenplay Ingestion - CLI Interface

Turn a shooting schedule or screenplay (PDF or plain text) into a structured
JSON model. A quick pattern pass runs first, then every shooting day or
script chunk is parsed in the background with optional AI assistance.

Usage:
    python main.py schedule input.pdf [-o OUTPUT] [--no-ai] [--workers N]
    python main.py script input.pdf [-o OUTPUT] [--ai-mode always]
"""
import argparse
import json
import sys
from pathlib import Path

from tqdm import tqdm

from config import AI_MODES, Settings, configure_logging
from models import ScheduleModel, ScriptModel
from pdf_extractor import DocumentError, get_total_pages
from pipeline import ScheduleIngestion, ScriptIngestion


def _read_input(input_path: Path) -> dict:
    if input_path.suffix.lower() == '.pdf':
        return {"pdf_bytes": input_path.read_bytes()}
    return {"text": input_path.read_text(encoding="utf-8", errors="replace")}


def _print_schedule_summary(model: ScheduleModel, verbose: bool) -> None:
    scene_count = sum(len(day.scenes) for day in model.days)
    print(f"\n{'='*50}")
    if model.production_name:
        print(f"Production: {model.production_name}")
    print(f"Cast members: {len(model.cast_list)}")
    print(f"Shooting days: {model.total_days}")
    print(f"Scenes scheduled: {scene_count}")
    print(f"Status: {model.processing_status}")
    print(f"{'='*50}")

    if verbose:
        for day in model.days:
            date = f" ({day.day_of_week or ''} {day.date})" if day.date else ""
            scenes = ", ".join(scene.scene_number for scene in day.scenes)
            print(f"  Day {day.day_number}{date}: {scenes or '-'}")


def _print_script_summary(model: ScriptModel, verbose: bool) -> None:
    print(f"\n{'='*50}")
    if model.title:
        print(f"Title: {model.title}")
    print(f"Scenes detected: {len(model.scenes)}")
    print(f"Speaking characters: {len(model.characters)}")
    print(f"Status: {model.processing_status}")
    print(f"{'='*50}")

    if verbose:
        top = sorted(model.characters, key=lambda c: -c.dialogue_count)[:10]
        for character in top:
            print(f"  {character.name}: {character.dialogue_count} lines in {len(character.scenes_appeared)} scenes")


def main():
    parser = argparse.ArgumentParser(
        description="Extract structured data from shooting schedules and screenplays",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python main.py schedule schedule.pdf             # Parse a shooting schedule
    python main.py script script.pdf --no-ai         # Heuristics only
    python main.py schedule schedule.pdf -o out.json # Custom output file
        """
    )
    parser.add_argument(
        "kind",
        choices=["schedule", "script"],
        help="Document type"
    )
    parser.add_argument(
        "input",
        help="Input PDF or text file"
    )
    parser.add_argument(
        "-o", "--output",
        help="Output JSON file (default: <input>_<kind>.json)"
    )
    parser.add_argument(
        "--no-ai",
        action="store_true",
        help="Disable AI-assisted extraction"
    )
    parser.add_argument(
        "--ai-mode",
        choices=AI_MODES,
        help="When to ask the AI service (default: AI_MODE or 'auto')"
    )
    parser.add_argument(
        "--workers",
        type=int,
        help="Parallel scope workers (default: INGEST_WORKERS or 2)"
    )
    parser.add_argument(
        "--log-file",
        help="Also write a debug log to this file"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show detailed output"
    )

    args = parser.parse_args()

    settings = Settings.from_env()
    if args.ai_mode:
        settings.ai_mode = args.ai_mode
    if args.no_ai:
        settings.ai_mode = "never"
    if args.workers:
        settings.workers = max(1, args.workers)
    configure_logging("DEBUG" if args.verbose else settings.log_level, args.log_file)

    # Validate input file
    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: File not found: {args.input}")
        sys.exit(1)

    output_path = Path(args.output) if args.output else input_path.parent / f"{input_path.stem}_{args.kind}.json"
    document = _read_input(input_path)

    try:
        if "pdf_bytes" in document:
            print(f"\nProcessing: {input_path.name} ({get_total_pages(document['pdf_bytes'])} pages)")
        else:
            print(f"\nProcessing: {input_path.name}")
        if settings.ai_mode == "never" or not settings.openai_api_key:
            print("AI extraction disabled, using heuristics only")

        with tqdm(total=100, desc="Starting", disable=not sys.stdout.isatty()) as pbar:
            def on_progress(update):
                pbar.set_description(update.message[:40])
                pbar.update(max(0, update.percent - pbar.n))

            ingestion_class = ScheduleIngestion if args.kind == "schedule" else ScriptIngestion
            handle = ingestion_class(settings, on_progress=on_progress).start(**document)
            model = handle.wait()
    except DocumentError as e:
        print(f"Error: {e}")
        sys.exit(1)

    # Show warnings
    if model.warnings and args.verbose:
        print("\nWarnings:")
        for w in model.warnings:
            print(f"  - {w}")

    if args.kind == "schedule":
        _print_schedule_summary(model, args.verbose)
    else:
        _print_script_summary(model, args.verbose)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(model.to_dict(), f, indent=2, ensure_ascii=False)

    print(f"\nOutput: {output_path}")
    if model.processing_status == "error":
        print("\nFinished with errors (see warnings)")
        sys.exit(2)
    print("\nDone!")


if __name__ == "__main__":
    main()

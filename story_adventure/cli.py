import typer
import asyncio
import logging
from pathlib import Path
from typing import List, Optional
from story_adventure.core.config import settings
from story_adventure.core.errors import RecoverableStoryError, StoryFormatError
from story_adventure.database import init_db
from story_adventure.schemas.story import Story, file_safe_title
from story_adventure.services.ai_validator import validate_ai_story_update
from story_adventure.services.linearizer import linearize_story
from story_adventure.services.player import PlayerMode, StoryPlayer

cli_app = typer.Typer()


@cli_app.callback()
def main():
    """
    Story Adventure: play, export and extend branching stories.
    """
    logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')


def _read_story(path: Path) -> Story:
    try:
        return Story.from_json_text(path.read_text(encoding="utf-8"))
    except (OSError, StoryFormatError) as e:
        typer.echo(f"Could not read {path}: {e}", err=True)
        raise typer.Exit(code=1)


def _ask(message: str) -> Optional[str]:
    return typer.prompt(message, default="", show_default=False)


def _render_media(media) -> str:
    src = media.src if not media.src.startswith("data:") else "embedded"
    return f"[{media.type}: {src}]"


@cli_app.command("init-db")
def init_db_command():
    """
    Initializes the database.
    """
    print("Initializing the database...")
    asyncio.run(init_db())
    print("Database initialized.")


@cli_app.command()
def play(
    file: Path = typer.Argument(..., help="Story JSON file"),
    save: bool = typer.Option(False, "--save", help="Write the story, with its state, back to FILE on quit"),
):
    """
    Plays a story in the terminal.

    Enter a choice number, "b" to go back, "f" or nothing to go forward and
    "q" to quit.
    """
    player = StoryPlayer(prompt=_ask)
    try:
        player.load_story(_read_story(file))
    except RecoverableStoryError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)

    while player.mode == PlayerMode.PLAYING:
        view = player.view()
        typer.echo(f"\n--- {view.section_id} ---")
        if view.media is not None:
            typer.echo(_render_media(view.media))
        typer.echo(view.text)
        for number, choice in enumerate(view.choices, start=1):
            typer.echo(f"  {number}. {choice.text or '(continue)'}")

        command = typer.prompt(">", default="f", show_default=False).strip().lower()
        try:
            if command == "q":
                break
            elif command == "b":
                if not player.one_step_back():
                    typer.echo("Already at the beginning.")
            elif command == "f":
                if not player.one_step_forward():
                    typer.echo("No way forward from here.")
            elif command.isdigit():
                player.choose(int(command) - 1)
            else:
                typer.echo(f"Unknown command: {command}")
        except RecoverableStoryError as e:
            typer.echo(str(e), err=True)

    if save:
        file.write_text(player.story.to_json_text(), encoding="utf-8")
        typer.echo(f"Saved story to {file}")
    for skipped in player.diagnostics:
        logging.debug(f"Skipped action {skipped.index} ({skipped.action}): {skipped.reason}")


@cli_app.command()
def linearize(
    file: Path = typer.Argument(..., help="Story JSON file"),
    start: str = typer.Option(..., "--start", help="Section to start at"),
    end: str = typer.Option(..., "--end", help="Section to end at"),
    through: str = typer.Option("", "--through", help="Comma separated sections to pass through"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Markdown file to write"),
):
    """
    Exports one read-through of a story as Markdown.
    """
    story = _read_story(file)
    passing_through: List[str] = [part.strip() for part in through.split(",") if part.strip()]
    try:
        markdown = linearize_story(story, start, end, passing_through)
    except RecoverableStoryError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)

    output = output or Path(f"{file_safe_title(story)}.md")
    output.write_text(markdown, encoding="utf-8")
    typer.echo(f"Wrote {output}")


@cli_app.command()
def validate(
    file: Path = typer.Argument(..., help="Original story JSON file"),
    response: Path = typer.Argument(..., help="File holding the raw model response"),
    section: str = typer.Option(..., "--section", help="Section the model was asked to extend"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Where to write the extended story"),
):
    """
    Checks a model response against the story it was asked to extend.
    """
    story = _read_story(file)
    result = validate_ai_story_update(story, response.read_text(encoding="utf-8"), section)
    if not result.valid:
        typer.echo(f"Rejected: {result.error}", err=True)
        raise typer.Exit(code=1)

    new_sections = [sid for sid in result.story.sections if sid not in story.sections]
    typer.echo(f"Accepted: {len(new_sections)} new sections ({', '.join(new_sections)})")
    if output is not None:
        output.write_text(result.story.to_json_text(), encoding="utf-8")
        typer.echo(f"Wrote {output}")


@cli_app.command()
def new(output: Path = typer.Option(Path("story.json"), "--output", "-o", help="File to write")):
    """
    Writes a fresh story skeleton.
    """
    if output.exists():
        typer.echo(f"{output} already exists", err=True)
        raise typer.Exit(code=1)
    output.write_text(Story.new().to_json_text(), encoding="utf-8")
    typer.echo(f"Wrote {output}")


if __name__ == "__main__":
    cli_app()

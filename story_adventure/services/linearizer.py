import logging
from typing import Iterable, Iterator, List, Optional, Sequence

from story_adventure.core.config import settings
from story_adventure.core.errors import LinearizationError
from story_adventure.schemas.story import Story
from story_adventure.services.actions import format_number, to_number
from story_adventure.services.variables import section_text

logger = logging.getLogger(__name__)


def _id_forms(section_id) -> set:
    """
    The spellings under which a pass-through section may appear in a path:
    "02" also matches "2".
    """
    text = str(section_id)
    forms = {text}
    number = to_number(text)
    if number == number:
        forms.add(format_number(number))
    return forms


def _visits_all(path: Sequence[str], must_visit: Iterable) -> bool:
    visited = set(path)
    return all(_id_forms(required) & visited for required in must_visit)


def depth_first_search(
    path: Sequence,
    end_at,
    must_visit: Sequence,
    story: Story,
    max_length: Optional[int] = None,
) -> Optional[List[str]]:
    """
    Finds a path from the last id of `path` to `end_at` that passes through
    every section in `must_visit`.

    Choices are tried in their stored order and the first complete path wins.
    A path never visits a section twice, so stories that can only be
    linearized by revisiting a section have no solution here.

    :param max_length: When set, paths longer than this are abandoned.
    :return: The path as a list of section ids, or None.
    """
    path = [str(section_id) for section_id in path]
    if not path:
        return None
    end_at = str(end_at)
    must_visit = list(must_visit)
    on_path = set(path)

    # pending[i] holds the choices not yet tried from the i-th frame's tip
    pending: List[Optional[Iterator[str]]] = [None]

    def backtrack():
        pending.pop()
        on_path.discard(path.pop())

    while pending:
        choices = pending[-1]
        if choices is None:
            current_id = path[-1]
            if current_id == end_at:
                if _visits_all(path, must_visit):
                    return list(path)
                backtrack()
                continue
            section = story.get_section(current_id)
            if section is None or not section.choices:
                backtrack()
                continue
            choices = iter([choice.target for choice in section.choices])
            pending[-1] = choices

        next_id = next(choices, None)
        if next_id is None:
            backtrack()
            continue
        if next_id in on_path:
            continue
        if max_length is not None and len(path) >= max_length:
            continue
        path.append(next_id)
        on_path.add(next_id)
        pending.append(None)
    return None


def markdown_from_section_ids(section_ids: Iterable, story: Story) -> str:
    """
    Renders sections, in order, as one Markdown document.
    """
    variables = story.variable_values
    markdown = ""
    for section_id in section_ids:
        section = story.get_section(section_id)
        if section is None:
            continue
        markdown += section_text(section, variables)
        markdown += "\n\n"
        if section.media is not None and section.media.type == "image" and section.media.src:
            markdown += f"![]({section.media.src})\n\n"
    return markdown


def linearize_story(story: Story, start_at, end_at, passing_through: Sequence = ()) -> str:
    """
    Exports one read-through of the story as Markdown.

    Raises LinearizationError when a named section does not exist or when no
    path satisfies the constraints.
    """
    for section_id in [start_at, end_at, *passing_through]:
        if story.get_section(section_id) is None:
            raise LinearizationError(f'Section "{section_id}" does not exist')

    working_copy = story.model_copy(deep=True)
    path = depth_first_search(
        [start_at],
        end_at,
        list(passing_through),
        working_copy,
        max_length=settings.LINEARIZE_MAX_PATH_LENGTH,
    )
    if path is None:
        through = ", ".join(str(section_id) for section_id in passing_through)
        raise LinearizationError(
            f"Could not find a linear story which starts at {start_at} and ends at {end_at}"
            f" while passing through all of {through}"
        )
    logger.info(f"Linearized story from {start_at} to {end_at} over {len(path)} sections")
    return markdown_from_section_ids(path, working_copy)

import logging
from enum import Enum
from typing import List, Optional

from story_adventure.core.errors import InvalidChoiceError, MissingSectionError, StoryNotLoadedError
from story_adventure.schemas.api import PlayerView
from story_adventure.schemas.story import Choice, Section, Story
from story_adventure.services.actions import PromptCallback, SkippedAction, execute_actions
from story_adventure.services.variables import interpolate, section_text

logger = logging.getLogger(__name__)


class PlayerMode(str, Enum):
    MENU = "MENU"
    PLAYING = "PLAYING"


class StoryPlayer:
    """
    Plays a story: tracks the current section and the navigation history and
    runs each section's script when the player enters it.

    The player owns the live story. Navigation errors leave it untouched.
    """

    def __init__(self, prompt: Optional[PromptCallback] = None):
        self.story: Optional[Story] = None
        self.mode = PlayerMode.MENU
        self.prompt = prompt
        self.diagnostics: List[SkippedAction] = []

    # --- Transitions ---

    def load_story(self, story: Optional[Story]) -> None:
        """
        Starts playing a story from its saved position, or from its first section.
        """
        if story is None or not story.sections:
            self.story = None
            self.mode = PlayerMode.MENU
            raise StoryNotLoadedError("This story has no sections. Please load a different one.")

        state = story.ensure_state()
        if not state.current_section or state.current_section not in story.sections:
            state.current_section = story.first_section_id()
        if state.history is None:
            state.history = []

        self.story = story
        self.mode = PlayerMode.PLAYING
        logger.info(f"Loaded story with {len(story.sections)} sections at section {state.current_section}")

    def new_story(self) -> Story:
        story = Story.new()
        self.load_story(story)
        return story

    def load_section(self, section_id, add_to_history: bool = True) -> Section:
        """
        Makes a section current and runs its script.

        The script runs after the section became current so that ADD_CHOICE and
        REMOVE_CHOICE change the choices shown for this visit.
        """
        story = self._require_story()
        target_id = str(section_id)
        section = story.get_section(target_id)
        if section is None:
            raise MissingSectionError(target_id)

        state = story.ensure_state()
        if state.history is None:
            state.history = []
        if add_to_history and state.current_section is not None:
            state.history.append(state.current_section)
        state.current_section = target_id
        logger.debug(f"Entered section {target_id}")

        if section.script:
            execute_actions(story, section.script, prompt=self.prompt, diagnostics=self.diagnostics)
        return section

    def one_step_forward(self) -> bool:
        """
        Follows the only choice of the current section. Does nothing when there
        are no choices or more than one.
        """
        choices = self._current_choices_raw()
        if len(choices) != 1:
            return False
        self.load_section(choices[0].target)
        return True

    def one_step_back(self) -> bool:
        """
        Returns to the most recent section in the history, consuming that entry.
        """
        story = self._require_story()
        history = story.state.history if story.state else None
        if not history:
            return False
        previous = history[-1]
        if story.get_section(previous) is None:
            raise MissingSectionError(previous)
        history.pop()
        self.load_section(previous, add_to_history=False)
        return True

    def choose(self, index: int) -> Section:
        choices = self._current_choices_raw()
        if not 0 <= index < len(choices):
            raise InvalidChoiceError(index, len(choices))
        return self.load_section(choices[index].target)

    # --- Rendering accessors ---

    @property
    def current_section_id(self) -> Optional[str]:
        if self.story is None or self.story.state is None:
            return None
        return self.story.state.current_section

    @property
    def current_section(self) -> Optional[Section]:
        if self.story is None:
            return None
        return self.story.get_section(self.current_section_id)

    @property
    def history(self) -> List[str]:
        if self.story is None or self.story.state is None:
            return []
        return self.story.state.history or []

    @property
    def can_step_forward(self) -> bool:
        return len(self._current_choices_raw()) == 1

    @property
    def can_step_back(self) -> bool:
        return bool(self.history)

    def current_text(self) -> str:
        if self.story is None:
            return ""
        return section_text(self.current_section, self.story.variable_values)

    def current_choices(self) -> List[Choice]:
        """
        The current section's choices with variables substituted in their labels.
        """
        variables = self.story.variable_values if self.story else {}
        return [
            Choice(text=interpolate(choice.text, variables), next=choice.next)
            for choice in self._current_choices_raw()
        ]

    def view(self) -> PlayerView:
        self._require_story()
        section = self.current_section
        return PlayerView(
            section_id=self.current_section_id,
            text=self.current_text(),
            media=section.media if section else None,
            choices=self.current_choices(),
            history=list(self.history),
            variables=dict(self.story.variable_values),
            can_step_forward=self.can_step_forward,
            can_step_back=self.can_step_back,
        )

    def _current_choices_raw(self) -> List[Choice]:
        section = self.current_section
        return section.choices if section else []

    def _require_story(self) -> Story:
        if self.mode is not PlayerMode.PLAYING or self.story is None:
            raise StoryNotLoadedError("No story loaded")
        return self.story

class StoryAdventureError(Exception):
    """
    Base class for every error raised by the story engine.
    """


class RecoverableStoryError(StoryAdventureError):
    """
    An error the caller reports to the user. The live story is left as it was.
    """


class StoryFormatError(RecoverableStoryError):
    """
    A story document could not be parsed or does not match the story schema.
    """


class StoryNotLoadedError(RecoverableStoryError):
    """
    The player has no story, or the story has no sections.
    """


class MissingSectionError(RecoverableStoryError):
    def __init__(self, section_id):
        self.section_id = str(section_id)
        super().__init__(f"Section {self.section_id} is missing from the story")


class InvalidChoiceError(RecoverableStoryError):
    def __init__(self, index, available: int):
        self.index = index
        self.available = available
        super().__init__(f"Choice {index} does not exist (the section has {available} choices)")


class LinearizationError(RecoverableStoryError):
    """
    No linear path satisfies the requested start, end and pass-through sections.
    """


class GraphIntegrityError(StoryAdventureError):
    """
    A choice points at a section that does not exist in a story that was
    expected to be consistent. This is a programming error, not a user error.
    """

    def __init__(self, dangling):
        self.dangling = list(dangling)
        details = ", ".join(f"{source} -> {target}" for source, target in self.dangling)
        super().__init__(f"Story graph has dangling choice references: {details}")

"""
Script interpreter for story sections.

A section's script is a list of actions run when the player enters the
section. Actions set and compute variables, gate other actions on variable
values and add or remove choices of the current section.

Malformed actions never stop a story: unknown tags, missing parameters and
an unknown current section are logged and skipped.
"""
import logging
import math
import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from story_adventure.schemas.story import Action, ActionType, Choice, Section, Story

logger = logging.getLogger(__name__)

PromptCallback = Callable[[str], Optional[str]]


class ParamType(str, Enum):
    VARIABLE = "VARIABLE"
    STRING = "STRING"
    ENUM = "ENUM"
    SECTION = "SECTION"
    ACTION = "ACTION"


COMPARISON_OPERATORS = ("=", "!=", ">", ">=", "<=", "<")

# An ACTION slot names a nested action whose own parameters follow inline.
ACTION_SIGNATURES: Dict[ActionType, Tuple[ParamType, ...]] = {
    ActionType.NONE: (),
    ActionType.INPUT: (ParamType.VARIABLE, ParamType.STRING),
    ActionType.SET: (ParamType.VARIABLE, ParamType.STRING),
    ActionType.ADD_TO_VARIABLE: (ParamType.VARIABLE, ParamType.STRING),
    ActionType.COMPARE_DO: (ParamType.VARIABLE, ParamType.ENUM, ParamType.STRING, ParamType.ACTION),
    ActionType.IF_SET_DO: (ParamType.VARIABLE, ParamType.ACTION),
    ActionType.IF_NOT_SET_DO: (ParamType.VARIABLE, ParamType.ACTION),
    ActionType.ADD_CHOICE: (ParamType.SECTION, ParamType.STRING),
    ActionType.REMOVE_CHOICE: (ParamType.SECTION,),
    ActionType.IF_SET_ADD_CHOICE: (ParamType.VARIABLE, ParamType.SECTION, ParamType.STRING),
    ActionType.IF_SET_REMOVE_CHOICE: (ParamType.VARIABLE, ParamType.SECTION),
}


class InvalidActionError(ValueError):
    """
    An action could not be parsed. The interpreter skips such actions.
    """


@dataclass(frozen=True)
class Instruction:
    type: ActionType
    args: Tuple[str, ...] = ()
    nested: Optional["Instruction"] = None


@dataclass(frozen=True)
class SkippedAction:
    index: int
    action: str
    reason: str


@dataclass
class ActionContext:
    story: Story
    prompt: Optional[PromptCallback] = None
    diagnostics: Optional[List[SkippedAction]] = None
    index: int = 0
    tag: str = ""

    def skip(self, reason: str) -> None:
        logger.info(f"Skipping action {self.index} ({self.tag}): {reason}")
        if self.diagnostics is not None:
            self.diagnostics.append(SkippedAction(index=self.index, action=self.tag, reason=reason))


# --- Parsing ---

def parse_action(tag: str, parameters: Sequence[str]) -> Instruction:
    """
    Parses a flat action into an instruction tree.

    Raises InvalidActionError for unknown tags, missing or empty parameters and
    unsupported comparison operators, including inside nested actions.
    """
    try:
        action_type = ActionType(tag)
    except ValueError:
        raise InvalidActionError(f"Unknown action type {tag!r}")

    args = []
    for position, param_type in enumerate(ACTION_SIGNATURES[action_type]):
        value = parameters[position] if position < len(parameters) else None
        if not value:
            raise InvalidActionError(f"Too few parameters for {action_type.value} action: {list(parameters)}")
        if param_type is ParamType.ACTION:
            nested = parse_action(value, parameters[position + 1:])
            return Instruction(action_type, tuple(args), nested)
        if param_type is ParamType.ENUM and value not in COMPARISON_OPERATORS:
            raise InvalidActionError(f"Bad operator {value!r} for {action_type.value} action")
        args.append(value)
    return Instruction(action_type, tuple(args))


# --- Number coercion ---

_DECIMAL_LITERAL = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_RADIX_LITERAL = re.compile(r"^0([xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)$")


def to_number(value: Union[str, int, float, None]) -> float:
    """
    Converts a value to a number the way a JavaScript Number() call does.

    Blank strings are 0 and anything that is not a numeric literal is NaN.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        return 0.0
    if _DECIMAL_LITERAL.match(text):
        return float(text)
    if text in ("Infinity", "+Infinity"):
        return math.inf
    if text == "-Infinity":
        return -math.inf
    if _RADIX_LITERAL.match(text):
        return float(int(text, 0))
    return math.nan


def format_number(number: float) -> str:
    """
    Formats a number the way JavaScript String(number) does: "8" not "8.0".
    """
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "Infinity" if number > 0 else "-Infinity"
    if number == 0:
        return "0"
    magnitude = abs(number)
    if number.is_integer() and magnitude < 1e16:
        return str(int(number))
    # repr gives the shortest digits that round-trip, as JavaScript does
    text = repr(number)
    if 1e-6 <= magnitude < 1e21:
        return format(Decimal(text), "f")
    mantissa, _, exponent = text.partition("e")
    power = int(exponent)
    return f"{mantissa}e{'+' if power > 0 else '-'}{abs(power)}"


def compare(value1: Union[str, float], operator: str, value2: Union[str, float]) -> bool:
    """
    Evaluates a COMPARE_DO condition.

    "=" is loose equality, "!=" compares strings and the ordering operators
    compare numbers, so they are all false for non-numeric operands.
    """
    if operator == "=":
        if isinstance(value1, str) and isinstance(value2, str):
            result = value1 == value2
        else:
            result = to_number(value1) == to_number(value2)
    elif operator == "!=":
        result = str(value1) != str(value2)
    elif operator == "<":
        result = to_number(value1) < to_number(value2)
    elif operator == ">":
        result = to_number(value1) > to_number(value2)
    elif operator == ">=":
        result = to_number(value1) >= to_number(value2)
    elif operator == "<=":
        result = to_number(value1) <= to_number(value2)
    else:
        logger.info(f"Unsupported operator {operator}")
        return False
    logger.debug(f"Comparison result for {value1} {operator} {value2}: {result}")
    return result


# --- Handlers ---

_HANDLERS: Dict[ActionType, Callable[[ActionContext, Instruction], None]] = {}


def _handles(action_type: ActionType):
    def register(handler):
        _HANDLERS[action_type] = handler
        return handler
    return register


def set_story_variable(story: Story, key: str, value: str) -> None:
    story.ensure_variables()[key] = value
    logger.debug(f"Setting {key} = {value}")


def _is_set(story: Story, name: str) -> bool:
    return bool(story.variable_values.get(name))


def _current_section(context: ActionContext) -> Optional[Section]:
    state = context.story.state
    if state is None or not state.current_section:
        context.skip("no current section")
        return None
    section = context.story.get_section(state.current_section)
    if section is None:
        context.skip(f"current section {state.current_section} not found")
    return section


def _add_choice(section: Section, target: str, text: str) -> None:
    if section.next is None:
        section.next = []
    for choice in section.next:
        if choice.target == target and choice.text == text:
            return
    section.next.append(Choice(text=text, next=target))


def _remove_choice(section: Section, target: str) -> None:
    choices = section.next
    if not choices:
        return
    for position, choice in enumerate(choices):
        if choice.target == target:
            logger.debug(f"Removing choice {choice.text!r} -> {target} at position {position} in section {section.id}")
            del choices[position]
            return


@_handles(ActionType.NONE)
def _none(context: ActionContext, instruction: Instruction) -> None:
    pass


@_handles(ActionType.INPUT)
def _input(context: ActionContext, instruction: Instruction) -> None:
    name, message = instruction.args
    if context.prompt is None:
        context.skip("no prompt available for INPUT")
        return
    value = context.prompt(message)
    if value is not None:
        set_story_variable(context.story, name, value)


@_handles(ActionType.SET)
def _set(context: ActionContext, instruction: Instruction) -> None:
    name, value = instruction.args
    set_story_variable(context.story, name, value)


@_handles(ActionType.ADD_TO_VARIABLE)
def _add_to_variable(context: ActionContext, instruction: Instruction) -> None:
    name, amount = instruction.args
    current = context.story.variable_values.get(name) or "0"
    set_story_variable(context.story, name, format_number(to_number(current) + to_number(amount)))


@_handles(ActionType.COMPARE_DO)
def _compare_do(context: ActionContext, instruction: Instruction) -> None:
    name, operator, target = instruction.args
    value = context.story.variable_values.get(name)
    if not value:
        logger.debug(f"COMPARE_DO variable {name} not set")
        return
    if compare(value, operator, target):
        _run(context, instruction.nested)


@_handles(ActionType.IF_SET_DO)
def _if_set_do(context: ActionContext, instruction: Instruction) -> None:
    (name,) = instruction.args
    if _is_set(context.story, name):
        logger.debug(f"Chaining to action {instruction.nested.type.value} with parameters {instruction.nested.args}")
        _run(context, instruction.nested)


@_handles(ActionType.IF_NOT_SET_DO)
def _if_not_set_do(context: ActionContext, instruction: Instruction) -> None:
    (name,) = instruction.args
    if not _is_set(context.story, name):
        logger.debug(f"Chaining to action {instruction.nested.type.value} with parameters {instruction.nested.args}")
        _run(context, instruction.nested)


@_handles(ActionType.ADD_CHOICE)
def _add_choice_action(context: ActionContext, instruction: Instruction) -> None:
    target, text = instruction.args
    section = _current_section(context)
    if section is not None:
        _add_choice(section, target, text)


@_handles(ActionType.REMOVE_CHOICE)
def _remove_choice_action(context: ActionContext, instruction: Instruction) -> None:
    (target,) = instruction.args
    section = _current_section(context)
    if section is not None:
        _remove_choice(section, target)


@_handles(ActionType.IF_SET_ADD_CHOICE)
def _if_set_add_choice(context: ActionContext, instruction: Instruction) -> None:
    name, target, text = instruction.args
    if not _is_set(context.story, name):
        return
    section = _current_section(context)
    if section is not None:
        _add_choice(section, target, text)


@_handles(ActionType.IF_SET_REMOVE_CHOICE)
def _if_set_remove_choice(context: ActionContext, instruction: Instruction) -> None:
    name, target = instruction.args
    if not _is_set(context.story, name):
        return
    section = _current_section(context)
    if section is not None:
        _remove_choice(section, target)


def _run(context: ActionContext, instruction: Instruction) -> None:
    _HANDLERS[instruction.type](context, instruction)


# --- Entry points ---

def execute_actions(
    story: Story,
    actions: Optional[Iterable[Union[Action, dict]]],
    prompt: Optional[PromptCallback] = None,
    diagnostics: Optional[List[SkippedAction]] = None,
) -> None:
    """
    Runs a section script against the story, in order.

    :param story: The live story. Its state and the current section's choices are mutated in place.
    :param actions: The script. Plain dicts in the story JSON format are accepted too.
    :param prompt: Asks the player for a value for INPUT actions. Returning None cancels the input.
    :param diagnostics: When given, every skipped action is recorded here.
    """
    if not actions:
        return
    context = ActionContext(story=story, prompt=prompt, diagnostics=diagnostics)
    for index, action in enumerate(actions):
        context.index = index
        if isinstance(action, dict):
            tag, parameters = action.get("action"), action.get("parameters") or []
        else:
            tag, parameters = action.action, action.parameters
        context.tag = str(tag)
        try:
            instruction = parse_action(tag, [str(p) if p is not None else "" for p in parameters])
        except InvalidActionError as e:
            context.skip(str(e))
            continue
        _run(context, instruction)


def run_action(
    story: Story,
    tag: str,
    parameters: Sequence[str],
    prompt: Optional[PromptCallback] = None,
    diagnostics: Optional[List[SkippedAction]] = None,
) -> None:
    """
    Runs a single action given by its tag and flat parameter list.
    """
    execute_actions(story, [Action(action=tag, parameters=list(parameters))], prompt=prompt, diagnostics=diagnostics)

"""Interactive terminal prompts."""

from etch.lib.errors import EtchError


def prompt_choice(message: str, choices: list[tuple[str, str]]) -> str:
    """Prompt user to select from numbered choices.

    Args:
        message: Prompt message
        choices: List of (value, description) tuples

    Returns:
        Selected value

    Raises:
        EtchError: (usage) on an out-of-range or non-numeric answer, or EOF
    """
    print(message)
    for i, (_, desc) in enumerate(choices, 1):
        print(f"  ({i}) {desc}")

    try:
        answer = input("Enter number: ").strip()
    except EOFError:
        answer = ""

    try:
        idx = int(answer)
    except ValueError:
        idx = 0
    if not 1 <= idx <= len(choices):
        raise EtchError.usage(f"invalid choice: {answer!r}").with_hint(
            f"enter a number between 1 and {len(choices)}"
        )
    return choices[idx - 1][0]


def prompt_bool(message: str, default: bool = False) -> bool:
    """Prompt user for yes/no answer."""
    default_str = "Y/n" if default else "y/N"
    try:
        value = input(f"{message} [{default_str}]: ").strip().lower()
        if not value:
            return default
        return value in ("y", "yes")
    except EOFError:
        return default

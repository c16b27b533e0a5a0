#!/usr/bin/env python
import sys
import os
import io
import contextlib
from typing import Text, List, TextIO, Optional, Iterator, FrozenSet

from gcnv_utils import common


def _kebab_to_snake(kebab_str: str) -> str:
    """
    Allow passing commands in kebab case by converting to snake case (to match file names)
    """
    return kebab_str.replace('-', '_')


def _snake_to_kebab(snake_str: str) -> str:
    return snake_str.replace('_', '-')


def _find_sub_modules(package: str) -> Iterator[Text]:
    module_folder = os.path.dirname(os.path.realpath(common.dynamic_import(package).__file__))
    command_module = os.path.basename(__file__)  # exclude the dispatcher itself
    for file_name in sorted(os.listdir(module_folder)):
        if file_name.endswith(".py") and not file_name.startswith('_') and file_name != command_module:
            yield file_name[:-len(".py")]


def _get_help_summary(package: str, sub_module: str) -> Optional[str]:
    try:
        submodule_arg_parser = common.dynamic_import(f"{package}.{sub_module}.__parse_arguments")
    except (ModuleNotFoundError, AttributeError):
        # not a command-line module
        return None
    string_buffer = io.StringIO()
    with contextlib.redirect_stdout(string_buffer):
        try:
            submodule_arg_parser([sub_module, "--help"])
        except SystemExit:
            pass
    # the description is the paragraph following the usage line
    paragraphs = string_buffer.getvalue().split("\n\n", 2)
    return paragraphs[1] if len(paragraphs) >= 2 else "(No help available)"


def _command_help_func(
        package: str,
        sub_modules: FrozenSet[str],
        file_descriptor: Optional[TextIO] = None,
        num_indent: int = 2,
        max_width: int = 78
):
    file_descriptor = sys.stdout if file_descriptor is None else file_descriptor
    print(f"{_snake_to_kebab(package)} [command] [args...]", file=file_descriptor)
    print("Valid commands are:", file=file_descriptor)
    indent1 = " " * num_indent
    indent2 = " " * (num_indent * 2)
    for command_name in sorted(sub_modules):
        help_str = _get_help_summary(package, command_name)
        if help_str is None:
            continue
        print(f"{indent1}{_snake_to_kebab(command_name)}:", file=file_descriptor)
        help_line = indent2
        for word in help_str.split():
            if help_line != indent2 and len(help_line + " " + word) > max_width:
                print(help_line, file=file_descriptor)
                help_line = indent2
            help_line = help_line + word if help_line == indent2 else help_line + " " + word
        print(help_line, file=file_descriptor)
    print("", file=file_descriptor)


def _bad_command_func(
        package: str,
        sub_modules: FrozenSet[str],
        argv: List[Text],
        file_descriptor: Optional[TextIO] = None
):
    file_descriptor = sys.stderr if file_descriptor is None else file_descriptor
    if len(argv) >= 1:
        print(f"Bad command: {argv[0]}", file=file_descriptor)
    else:
        print("No command specified.", file=file_descriptor)
    _command_help_func(package=package, sub_modules=sub_modules, file_descriptor=file_descriptor)
    sys.exit(1)


def main(argv: Optional[List[Text]] = None):
    """
    Dispatch arguments to the main function of the named command module, with the dispatcher's own name removed, so
    that the command behaves the same as if it had been called directly.
    Args:
        argv: input arguments to command. If called from command-line (usual use case), this will simply be sys.argv
    """
    if argv is None:
        argv = sys.argv
    package = __package__ or "gcnv_utils"
    sub_modules = frozenset(_find_sub_modules(package))
    if len(argv) < 2:
        _bad_command_func(package=package, sub_modules=sub_modules, argv=argv[1:])
        return
    sub_module_command = argv[1]
    if sub_module_command in {"help", "-help", "--help"}:
        _command_help_func(package=package, sub_modules=sub_modules)
        return
    sub_module_command = _kebab_to_snake(sub_module_command)
    if sub_module_command not in sub_modules:
        _bad_command_func(package=package, sub_modules=sub_modules, argv=argv[1:])
        return
    try:
        call_func = common.dynamic_import(f"{package}.{sub_module_command}.main")
    except (ModuleNotFoundError, AttributeError):
        raise ValueError(
            f"{sub_module_command} does not have a 'main' function, and thus cannot be invoked as a command-line "
            "program."
        )
    call_func(argv[1:])


if __name__ == "__main__":
    main()

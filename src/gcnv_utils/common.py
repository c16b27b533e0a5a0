import os
import importlib
import contextlib
from typing import Text, Any, Union, Iterable, Iterator, TypeVar, Tuple
from types import ModuleType


TypeT = TypeVar("TypeT")


def add_exception_context(exception: Exception, context: str):
    """
    Add additional context to a caught exception
    Args:
        exception: Exception
            Exception that was caught
        context: str
            Extra info to add to exception.
    Returns:
        exception: Exception
            Original exeption with annotated context.
    """
    if len(exception.args) == 1 and type(exception.args[0]) is str:
        exception.args = (f"{context}: {exception.args[0]}",)
    else:
        exception.args = (context,) + exception.args


def _get_temporary_path(output_path: Text) -> Text:
    # the temporary name keeps the extension(s) of output_path
    directory, basename = os.path.split(os.path.abspath(output_path))
    return os.path.join(directory, f".partial.{os.getpid()}.{basename}")


@contextlib.contextmanager
def atomic_output_files(*output_paths: Text) -> Iterator[Tuple[Text, ...]]:
    """
    Yield one temporary path per output path, each in the same directory as its output. Only when the block completes
    are all temporary files renamed to their outputs; if an exception is raised every temporary file is removed, so
    either all outputs are written or none is.
    """
    temporary_paths = tuple(_get_temporary_path(output_path) for output_path in output_paths)
    try:
        yield temporary_paths
        for temporary_path, output_path in zip(temporary_paths, output_paths):
            os.replace(temporary_path, output_path)
    except BaseException:
        for temporary_path in temporary_paths:
            if os.path.exists(temporary_path):
                os.remove(temporary_path)
        raise


@contextlib.contextmanager
def atomic_output_file(output_path: Text) -> Iterator[Text]:
    """
    Yield a temporary path in the same directory as output_path. On success the temporary file is renamed to
    output_path; if an exception is raised it is removed, so output_path is never left partially written.
    """
    with atomic_output_files(output_path) as (temporary_path,):
        yield temporary_path


def iter_pairs(values: Iterable[TypeT]) -> Iterator[tuple]:
    """ Yield successive (previous, next) pairs from values """
    value_iter = iter(values)
    try:
        previous = next(value_iter)
    except StopIteration:
        return
    for value in value_iter:
        yield previous, value
        previous = value


def dynamic_import(
        obj_name: Text,
        base: Union[Text, ModuleType, None] = None
) -> Any:
    """
    Import an object by name and return it. Can descend object hierarchy by import_module() or getattr().
    Args:
        obj_name: str
            Name of object in hierarchy, with layers separated by '.'
            e.g. "gcnv_utils.postprocess_germline_cnv_calls.main"
        base: str, ModuleType, or None (Default=None)
            Base package / object for import.
            If None, import from global namespace.
            If a str, import from package with that name.
    Returns:
        obj: Any
            Imported object
    """
    if isinstance(base, str):
        base = importlib.import_module(base)
    while '.' in obj_name:
        top_level, obj_name = obj_name.split('.', 1)
        if base is None:
            base = importlib.import_module(top_level)
        elif hasattr(base, top_level):
            base = getattr(base, top_level)
        else:
            base = importlib.import_module('.' + top_level, package=base.__name__)

    if base is None:
        base = importlib.import_module(obj_name)
    elif hasattr(base, obj_name):
        base = getattr(base, obj_name)
    else:
        base = importlib.import_module('.' + obj_name, package=base.__name__)
    return base

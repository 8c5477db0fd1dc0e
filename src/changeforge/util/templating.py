import logging
import os
from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)


def _search_dirs(sql_file: str, macros_dir: Optional[str]) -> List[str]:
    search_dirs = []

    if macros_dir and os.path.isdir(macros_dir):
        search_dirs.append(macros_dir)
    elif macros_dir:
        logger.warning(f"Macros directory '{macros_dir}' not found or is not a directory. No global macros will be loaded from it.")

    sql_file_dir = os.path.dirname(sql_file)
    if sql_file_dir and os.path.isdir(sql_file_dir) and sql_file_dir not in search_dirs:
        search_dirs.append(sql_file_dir)
    elif sql_file_dir and not os.path.isdir(sql_file_dir):
        logger.warning(f"Directory of SQL file '{sql_file_dir}' not found or is not a directory. Template might not resolve includes correctly.")

    return search_dirs


def render_sql(sql_file: str, variables: Optional[Dict[str, Any]] = None, macros_dir: Optional[str] = None) -> str:
    """
    Renders an SQL template file using Jinja2, substituting variables and globally available macros.

    Undefined variables are an error; they never render as empty text.

    Args:
        sql_file (str): The ABSOLUTE path to the SQL template file.
        variables (Optional[Dict[str, Any]]): A dictionary of variables to inject into the template.
        macros_dir (Optional[str]): The ABSOLUTE directory where Jinja2 macro files are located.
                                    Templates in this directory can be imported or included
                                    by SQL files.

    Returns:
        str: The rendered SQL content.

    Raises:
        ValueError: If no template search directory exists or the template fails to render.
        FileNotFoundError: If the template cannot be found.
    """
    variables = variables or {}

    search_dirs = _search_dirs(sql_file, macros_dir)
    if not search_dirs:
        raise ValueError("No valid template search directories provided or found for Jinja2.")

    env = Environment(
        loader=FileSystemLoader(search_dirs),
        trim_blocks=True,
        lstrip_blocks=True,
        undefined=StrictUndefined,
    )

    template_name = os.path.basename(sql_file)
    try:
        template = env.get_template(template_name)
    except Exception as e:
        raise FileNotFoundError(f"Could not find or load SQL template '{sql_file}' (looked for '{template_name}' in {search_dirs}): {e}")

    try:
        rendered = template.render(**variables)
    except TemplateError as e:
        raise ValueError(f"Failed to render SQL template '{sql_file}': {e}") from e
    logger.debug(f"Rendered SQL template '{sql_file}' ({len(rendered)} characters)")
    return rendered

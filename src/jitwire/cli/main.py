"""Main CLI entry point."""

import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, Optional

import rich_click as click
from rich.console import Console
from rich.logging import RichHandler
from rich.syntax import Syntax
from rich.tree import Tree

from jitwire import __version__
from jitwire.runtime.component import ComponentInstance, ComponentOptions
from jitwire.runtime.options import RenderOptions
from jitwire.runtime.patch import optimize
from jitwire.runtime.patch_context import RenderTree
from jitwire.runtime.renderer import JitRenderer

console = Console()

click.rich_click.USE_RICH_MARKUP = True
click.rich_click.STYLE_HELPTEXT_FIRST = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = "Try running 'jitwire --help' for more information."
click.rich_click.STYLE_HEADER_TEXT = "bold cyan"
click.rich_click.STYLE_OPTION = "cyan"
click.rich_click.STYLE_SWITCH = "cyan"
click.rich_click.STYLE_METAVAR = "dim white"
click.rich_click.STYLE_USAGE_COMMAND = "cyan"
click.rich_click.STYLE_USAGE = "dim"

click.rich_click.COMMAND_GROUPS = {
    "jitwire": [
        {
            "name": "Commands",
            "commands": ["analyze", "render", "run"],
        }
    ]
}


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=False)],
    )


def import_component(target: str) -> ComponentOptions:
    """Import a component definition from string (e.g. 'app.pages:home')."""
    if ":" not in target:
        raise click.BadParameter(
            "Component must be in format 'module:component'", param_hint="COMPONENT"
        )

    module_name, attr = target.split(":", 1)

    # Add current directory to path so we can import local modules
    if os.getcwd() not in sys.path:
        sys.path.insert(0, os.getcwd())

    import importlib

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise click.BadParameter(
            f"Could not import module '{module_name}': {e}", param_hint="COMPONENT"
        )

    try:
        component = getattr(module, attr)
    except AttributeError:
        raise click.BadParameter(
            f"Attribute '{attr}' not found in module '{module_name}'",
            param_hint="COMPONENT",
        )

    if not isinstance(component, ComponentOptions):
        raise click.BadParameter(
            f"'{target}' is not a ComponentOptions instance", param_hint="COMPONENT"
        )
    return component


def parse_props(value: Optional[str]) -> Dict[str, Any]:
    if not value:
        return {}
    try:
        props = json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON: {e}", param_hint="--props")
    if not isinstance(props, dict):
        raise click.BadParameter("Props must be a JSON object", param_hint="--props")
    return props


def build_tree_view(tree: RenderTree, show_source: bool = False) -> Tree:
    """Turn a RenderTree into a rich Tree for display."""

    def label(slot: RenderTree) -> str:
        name = slot.name or "root"
        flags = "[green]static[/]" if slot.static else "[yellow]dynamic[/]"
        generated = "optimized" if slot.source else "original"
        text = f"[bold cyan]{name}[/] {flags} [dim]{generated} render[/]"
        if slot.styles:
            text += f" [magenta]styles: {', '.join(sorted(slot.styles))}[/]"
        return text

    root = Tree(label(tree))
    stack = [(tree, root)]
    while stack:
        slot, branch = stack.pop()
        if show_source and slot.source:
            branch.add(Syntax(slot.source, "python", word_wrap=True))
        for child in slot.children or []:
            stack.append((child, branch.add(label(child))))
    return root


@click.group(
    help=f"""
[bold white on cyan] jitwire [/] [bold cyan]v{__version__}[/] Fold static markup out of server-rendered components.

Run [bold cyan]jitwire analyze COMPONENT[/] to inspect what gets optimized.
Run [bold cyan]jitwire run COMPONENT[/] to serve it.

[dim]COMPONENT is a string in format 'module:component', e.g. 'app.pages:home'[/dim]
"""
)
@click.version_option(__version__)
def cli() -> None:
    pass


@cli.command()
@click.argument("component")
@click.option("--props", default=None, help="Request props as a JSON object")
@click.option("--static-props", default=None, help="Props of the static pass as JSON")
@click.option("--show-source", is_flag=True, help="Print generated render functions")
@click.option("--debug", is_flag=True, help="Verbose optimizer logging")
def analyze(
    component: str,
    props: Optional[str],
    static_props: Optional[str],
    show_source: bool,
    debug: bool,
) -> None:
    """Run the optimizer once and print the resulting render tree."""
    setup_logging(debug)
    definition = import_component(component)
    options = RenderOptions(debug=debug)

    static_vm = ComponentInstance(definition, props=parse_props(static_props))
    dynamic_vm = ComponentInstance(definition, props=parse_props(props))

    try:
        result = asyncio.run(optimize(static_vm, dynamic_vm, options))
    except Exception as e:
        console.print(f"[bold red]Optimization failed[/]: {type(e).__name__}: {e}")
        sys.exit(1)

    console.print(build_tree_view(result.render_tree, show_source))


@cli.command()
@click.argument("component")
@click.option("--props", default=None, help="Request props as a JSON object")
@click.option("--static-props", default=None, help="Props of the static pass as JSON")
@click.option("--debug", is_flag=True, help="Verbose optimizer logging")
def render(
    component: str, props: Optional[str], static_props: Optional[str], debug: bool
) -> None:
    """Render COMPONENT once through the optimized path and print the HTML."""
    setup_logging(debug)
    renderer = JitRenderer(
        import_component(component),
        RenderOptions(debug=debug),
        static_props=parse_props(static_props),
    )
    html = asyncio.run(renderer.render_to_string(parse_props(props)))
    click.echo(html)


@cli.command()
@click.argument("component")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8000, type=int, help="Port to bind to")
@click.option("--static-props", default=None, help="Props of the static pass as JSON")
@click.option("--debug", is_flag=True, help="Show debug error pages")
@click.option("--no-access-log", is_flag=True, help="Disable access logging")
def run(
    component: str,
    host: str,
    port: int,
    static_props: Optional[str],
    debug: bool,
    no_access_log: bool,
) -> None:
    """Serve COMPONENT using Uvicorn."""
    import uvicorn

    from jitwire.runtime.app import create_app

    setup_logging(debug)
    app = create_app(
        import_component(component),
        RenderOptions(debug=debug),
        static_props=parse_props(static_props),
    )

    console.print(f"🚀 Serving [cyan]{component}[/]")
    console.print(
        f"🌍 Listening on [link=http://{host}:{port}]http://{host}:{port}[/link]"
    )
    uvicorn.run(app, host=host, port=port, access_log=not no_access_log)


if __name__ == "__main__":
    cli()

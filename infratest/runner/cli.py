import argparse


def _add_toggle(parser, name: str, what: str) -> None:
    """--NAME / --no-NAME; unset means auto-detect from the terminal."""
    parser.add_argument(
        f"--{name}", dest=name, action="store_const", const=True, help=f"Force {what}"
    )
    parser.add_argument(
        f"--no-{name}", dest=name, action="store_const", const=False, help=f"Disable {what}"
    )
    parser.set_defaults(**{name: None})


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="infratest",
        description="Provision Terraform scenarios, verify their outputs and tear them down",
    )
    selection = parser.add_argument_group("scenario selection")
    selection.add_argument(
        "--suite",
        metavar="FILE",
        help="Scenario suite YAML (default: bundled load balancer suite)",
    )
    selection.add_argument(
        "--scenario",
        dest="scenarios",
        metavar="NAME",
        action="append",
        default=[],
        help="Run only this scenario (repeatable)",
    )
    selection.add_argument(
        "--module-root",
        metavar="DIR",
        help="Override the suite's module_root (tree copied into each workspace)",
    )
    selection.add_argument("--list", action="store_true", help="List scenarios and exit")

    execution = parser.add_argument_group("execution")
    execution.add_argument(
        "--parallel",
        action="store_true",
        help="Run scenarios in parallel, each in its own workspace",
    )
    execution.add_argument(
        "--max-workers",
        type=int,
        metavar="N",
        help="Upper bound on concurrently running scenarios (with --parallel)",
    )

    output = parser.add_argument_group("output")
    output.add_argument(
        "--verbose",
        action="store_true",
        help="Stream terraform output and phase starts to the console",
    )
    _add_toggle(output, "color", "color output")
    _add_toggle(output, "emoji", "emoji output")
    return parser.parse_args(argv)

from rich.pretty import pprint

from cmdtree import *


tool = Command("tool", summary="Tool builds and serves things.", errors=ErrorHandling.EXIT)
verbose = tool.bool("v", descr="verbose output")


@tool.command
def build(command):
    """build the project"""
    pprint({"verbose": verbose.value, "output": command["o"], "sources": command.arguments})


build.string("o", "a.out", "write the binary to `FILE`")


@tool.command(default=True)
def serve(command):
    """start the server"""
    pprint({"verbose": verbose.value, "timeout": command["timeout"]})


serve.duration("timeout", descr="shut down after `DELAY`")


if __name__ == '__main__':
    invoke(tool)

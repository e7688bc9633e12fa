"""
PHP Recipe: Download -> Unzip -> SetPath (notifies RefreshEnv)

The provisioning recipe the engine was built for, played out against a
scratch directory instead of a real Windows host:

```text
download ── unzip ── set_path ──notify──> refresh_env*
                 └── write_ini
```

- `download` writes a zip into the cache directory (first attempt "fails"
  to show the retry loop)
- `unzip` extracts it into the install directory
- `set_path` appends the install directory to a PATH file and notifies
  `refresh_env`
- `write_ini` writes php.ini next to php.exe

The recipe is run twice. The first run changes everything and fires the
refresh once; the second run finds every guard satisfied and changes
nothing.

Run with:
```bash
PYTHONPATH=src python examples/php_recipe.py
```
"""

import asyncio
import logging
import re
import tempfile
import zipfile
from pathlib import Path

from pyconverge import Action, DependencyGraph, Executor, RetryPolicy, RunContext
from pyconverge.probes import path_exists

logger = logging.getLogger("php_recipe")

RELEASES_LISTING = """
<a href="/downloads/releases/php-5.6.39-nts-Win32-VC11-x64.zip">php-5.6.39-nts-Win32-VC11-x64.zip</a>
<a href="/downloads/releases/php-5.6.40-nts-Win32-VC11-x64.zip">php-5.6.40-nts-Win32-VC11-x64.zip</a>
"""


def latest_php(listing: str, major: str = "5.6") -> str:
    """Newest non-thread-safe x64 zip of a major version in a releases listing."""
    pattern = re.compile(rf"php-{re.escape(major)}\.(\d+)-nts-Win32-VC11-x64\.zip")
    patches = {int(m.group(1)): m.group(0) for m in pattern.finditer(listing)}
    if not patches:
        raise LookupError(f"no PHP {major} release in listing")
    return patches[max(patches)]


def build_recipe() -> DependencyGraph:
    attempts = {"download": 0}

    def download(ctx):
        attempts["download"] += 1
        if attempts["download"] == 1:
            raise ConnectionError("mirror reset the connection")
        zip_path = Path(ctx["zip_path"])
        zip_path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(zip_path, "w") as archive:
            archive.writestr("php.exe", "MZ")
            archive.writestr("php.ini-production", "memory_limit = 128M\n")

    def unzip(ctx):
        with zipfile.ZipFile(ctx["zip_path"]) as archive:
            archive.extractall(ctx["php_dir"])

    def on_path(ctx) -> bool:
        path_file = Path(ctx["path_file"])
        return path_file.exists() and ctx["php_dir"] in path_file.read_text().splitlines()

    def set_path(ctx):
        with open(ctx["path_file"], "a") as f:
            f.write(ctx["php_dir"] + "\n")

    def write_ini(ctx):
        template = Path(ctx["php_dir"], "php.ini-production").read_text()
        Path(ctx["php_dir"], "php.ini").write_text(template + "extension_dir = ext\n")

    def refresh_env(ctx):
        entries = Path(ctx["path_file"]).read_text().split()
        logger.info(f"environment refreshed, PATH now has {len(entries)} entries")

    graph = DependencyGraph()
    graph.add_action(
        Action(
            "download",
            download,
            guard=path_exists(ctx_key="zip_path"),
            retry_policy=RetryPolicy(max_attempts=3, backoff_delay=0.2),
            timeout=30,
        )
    )
    graph.add_action(
        Action.from_options(
            "unzip",
            unzip,
            {"timeout": 30},
            guard=path_exists(ctx_key="php_exe"),
            requires=["download"],
        )
    )
    graph.add_action(
        Action("set_path", set_path, guard=on_path, requires=["unzip"], notifies=["refresh_env"])
    )
    graph.add_action(
        Action("write_ini", write_ini, guard=path_exists(ctx_key="php_ini"), requires=["unzip"])
    )
    graph.add_action(Action("refresh_env", refresh_env, refresh_only=True))
    return graph


async def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)-7s %(name)s: %(message)s")

    with tempfile.TemporaryDirectory() as root:
        release = latest_php(RELEASES_LISTING)
        php_dir = str(Path(root, "php"))
        config = {
            "zip_path": str(Path(root, "cache", release)),
            "php_dir": php_dir,
            "php_exe": str(Path(php_dir, "php.exe")),
            "php_ini": str(Path(php_dir, "php.ini")),
            "path_file": str(Path(root, "PATH.txt")),
        }

        executor = Executor(max_concurrency=2)
        graph = build_recipe()
        print(graph.level_graph())

        first = await executor.run(graph, RunContext(config))
        print(first.format())
        print()

        second = await executor.run(build_recipe(), RunContext(config))
        print(second.format())
        print(f"\nconverged on second run: {second.converged}")


if __name__ == "__main__":
    asyncio.run(main())

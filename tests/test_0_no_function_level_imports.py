"""Guard: no function-level `import prometheus_chat` inside src/.

A function-level `import prometheus_chat.x.y` shadows the module-level
`prometheus_chat` binding for the ENTIRE enclosing function, causing
UnboundLocalError on any `prometheus_chat.` reference that precedes the
import statement. The same goes for `from prometheus_chat... import` inside
functions, which also hides import cycles until runtime.

This file is named with `test_0_` so it runs first.
"""

import ast
import os


_SRC_ROOT = os.path.join(os.path.dirname(__file__), "..", "src", "prometheus_chat")


def _imported_names(node) -> list[str]:
    if isinstance(node, ast.Import):
        return [alias.name for alias in node.names]
    if isinstance(node, ast.ImportFrom) and node.module:
        return [node.module]
    return []


def _find_function_level_imports():
    """Walk all .py files and flag prometheus_chat imports inside functions/methods."""
    violations = []
    for dirpath, _dirs, files in os.walk(_SRC_ROOT):
        for fname in files:
            if not fname.endswith(".py"):
                continue
            path = os.path.join(dirpath, fname)
            with open(path) as f:
                tree = ast.parse(f.read(), filename=path)

            rel = os.path.relpath(path, _SRC_ROOT)
            for node in ast.walk(tree):
                if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                    continue
                for child in ast.walk(node):
                    for name in _imported_names(child):
                        if name.startswith("prometheus_chat"):
                            violations.append(f"{rel}:{child.lineno} function-level import of {name}")
    return violations


def test_source_tree_exists():
    assert os.path.isdir(_SRC_ROOT)


def test_no_function_level_imports():
    violations = _find_function_level_imports()
    assert violations == [], (
        "Function-level `import prometheus_chat.*` shadows the module binding and "
        "causes UnboundLocalError. Move these to module level:\n"
        + "\n".join(f"  {v}" for v in violations)
    )

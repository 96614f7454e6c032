#!/usr/bin/env python3

from __future__ import annotations

import json
import pathlib
import shutil
import subprocess
import sys
import tempfile
import textwrap
import unittest
from typing import Dict, List, Tuple

REPO_ROOT: pathlib.Path = pathlib.Path(__file__).resolve().parent.parent
GENERATOR_PATH: pathlib.Path = REPO_ROOT / "tools" / "alon_gen.py"
CASES_PATH: pathlib.Path = REPO_ROOT / "schemas" / "cases.json"

# (prefix, example index) -> C expressions over the decoded `value`
PROBES: Dict[Tuple[str, int], List[str]] = {
    ("double_packed", 1): ["value.x == 50", "value.y == 1000"],
    ("double_padded", 0): ["value.x == 1", "value.y == 70000"],
    ("floats", 0): ["value.x == 1.5f", "value.y == -0.25"],
    ("two_strings", 0): ['strcmp(value.x, "foo") == 0', 'strcmp(value.y, "bar") == 0'],
    ("fixed_u16_array", 0): ["value.x[1] == 256", "value.x[2] == 65535", "value.y == 7"],
    ("optional_string", 0): ["value.x == NULL"],
    ("optional_string", 1): ['strcmp(value.x, "bruh") == 0'],
    ("optional_u64", 0): ["value.x.present == 0"],
    ("optional_u64", 1): ["value.x.present == 1", "value.x.value == 42"],
    ("string_array", 0): [
        'strcmp(value.names[0], "a") == 0',
        'strcmp(value.names[1], "") == 0',
        'strcmp(value.names[2], "ccc") == 0',
        "value.count == 3",
    ],
    ("mixed", 0): [
        "value.version == 2",
        "value.owner[3] == 6",
        'strcmp(value.name, "alon") == 0',
        'strcmp(value.tags[1], "yz") == 0',
        "value.score.present == 1",
        "value.score.value == 1000",
        "value.nickname == NULL",
        "value.values[2] == 3",
        "value.ratio == 0.5",
    ],
    ("mixed", 1): ["value.score.present == 0", 'strcmp(value.nickname, "al") == 0'],
}


def find_compiler() -> str | None:
    for name in ("cc", "gcc", "clang"):
        path = shutil.which(name)
        if path:
            return path
    return None


def render_example(prefix: str, index: int, output: List[int]) -> List[str]:
    record = f"struct alon_{prefix}"
    label = f"{prefix}[{index}]"
    data = ", ".join(str(b) for b in output)
    lines = [
        "  {",
        f"    static const uint8_t data[] = {{{data}}};",
        f"    {record} value;",
        "    memset(&value, 0, sizeof value);",
        f'    CHECK(alon_{prefix}_deserialize(data, sizeof data, &value) == ALON_OK, "{label} deserialize");',
        f'    CHECK(alon_{prefix}_size(&value) == sizeof data, "{label} size");',
    ]
    for probe in PROBES.get((prefix, index), []):
        escaped = probe.replace("\\", "\\\\").replace('"', '\\"')
        lines.append(f'    CHECK({probe}, "{label} {escaped}");')
    lines.extend(
        [
            "    uint8_t encoded[sizeof data];",
            f'    CHECK(alon_{prefix}_serialize(&value, encoded, sizeof encoded) == ALON_OK, "{label} serialize");',
            f'    CHECK(memcmp(encoded, data, sizeof data) == 0, "{label} bytes");',
            f'    CHECK(alon_{prefix}_serialize(&value, encoded, sizeof encoded - 1) == ALON_EBUFFER, "{label} short serialize");',
            f"    alon_{prefix}_free(&value);",
            "    for (uint64_t k = 0; k < sizeof data; k++) {",
            f"      {record} partial;",
            "      memset(&partial, 0, sizeof partial);",
            f'      CHECK(alon_{prefix}_deserialize(data, k, &partial) == ALON_EBUFFER, "{label} truncated");',
            f"      alon_{prefix}_free(&partial);",
            "    }",
            "  }",
        ]
    )
    return lines


def render_harness(vectors: Dict[str, dict]) -> str:
    lines = [
        "#include <stdio.h>",
        "#include <string.h>",
        '#include "alon.h"',
        "",
        "static int failures = 0;",
        "",
        "#define CHECK(cond, msg) \\",
        "  do { \\",
        "    if (!(cond)) { \\",
        '      printf("FAIL %s\\n", msg); \\',
        "      failures++; \\",
        "    } \\",
        "  } while (0)",
        "",
        "int main(void) {",
    ]
    for prefix, entry in vectors.items():
        for index, example in enumerate(entry["examples"]):
            lines.extend(render_example(prefix, index, example["output"]))
    lines.extend(
        [
            '  printf("%d failures\\n", failures);',
            "  return failures == 0 ? 0 : 1;",
            "}",
        ]
    )
    return "\n".join(lines) + "\n"


class GeneratedCodeRoundTripTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.compiler = find_compiler()

    def setUp(self) -> None:
        if self.compiler is None:
            self.skipTest("no C compiler available")

    def generate(self, tmp: pathlib.Path) -> Dict[str, dict]:
        vectors_path = tmp / "test_data.json"
        cmd = [
            sys.executable,
            str(GENERATOR_PATH),
            "--in",
            str(CASES_PATH),
            "--header",
            str(tmp / "alon.h"),
            "--source",
            str(tmp / "alon.c"),
            "--vectors",
            str(vectors_path),
        ]
        result = subprocess.run(cmd, cwd=REPO_ROOT, text=True, capture_output=True)
        self.assertEqual(result.returncode, 0, msg=result.stderr)
        return json.loads(vectors_path.read_text(encoding="utf-8"))

    def build_and_run(self, tmp: pathlib.Path, harness: str) -> subprocess.CompletedProcess[str]:
        (tmp / "harness.c").write_text(harness, encoding="utf-8")
        binary = tmp / "harness"
        build = subprocess.run(
            [self.compiler, "-std=c99", "-o", str(binary), str(tmp / "alon.c"), str(tmp / "harness.c")],
            cwd=tmp,
            text=True,
            capture_output=True,
        )
        self.assertEqual(build.returncode, 0, msg=build.stderr)
        return subprocess.run([str(binary)], cwd=tmp, text=True, capture_output=True)

    def test_golden_vectors_round_trip(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            tmp = pathlib.Path(td)
            vectors = self.generate(tmp)
            self.assertGreater(sum(len(entry["examples"]) for entry in vectors.values()), 10)

            result = self.build_and_run(tmp, render_harness(vectors))
            self.assertEqual(result.returncode, 0, msg=result.stdout + result.stderr)
            self.assertNotIn("FAIL", result.stdout)
            self.assertIn("0 failures", result.stdout)

    def test_absent_optional_leaves_value_slot_alone(self) -> None:
        harness = textwrap.dedent(
            """
            #include <stdio.h>
            #include <string.h>
            #include "alon.h"

            int main(void) {
              const uint8_t data[] = {0};
              struct alon_optional_u64 value;
              value.x.present = 1;
              value.x.value = 77;
              if (alon_optional_u64_deserialize(data, sizeof data, &value) != ALON_OK) return 1;
              if (value.x.present != 0) return 2;
              if (value.x.value != 77) return 3;
              if (alon_optional_u64_deserialize(data, 0, &value) != ALON_EBUFFER) return 4;
              return 0;
            }
            """
        ).lstrip()

        with tempfile.TemporaryDirectory() as td:
            tmp = pathlib.Path(td)
            self.generate(tmp)
            result = self.build_and_run(tmp, harness)
            self.assertEqual(result.returncode, 0, msg=result.stdout + result.stderr)


if __name__ == "__main__":
    unittest.main()

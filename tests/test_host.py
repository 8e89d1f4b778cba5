"""Tests for selection extraction and the in-memory host document."""

import pytest

from nbassist.core.host import InMemoryNotebook, extract_selection
from nbassist.core.schemas_cells import CellRecord

SOURCE = "import pandas as pd\ndf = pd.read_csv('x.csv')\ndf.head()   "


def test_extract_selection_single_line():
    assert extract_selection(SOURCE, (1, 0), (1, 2)) == "df"


def test_extract_selection_multi_line():
    assert extract_selection(SOURCE, (0, 7), (1, 2)) == "pandas as pd\ndf"


def test_extract_selection_is_right_trimmed():
    assert extract_selection(SOURCE, (2, 0), (2, 12)) == "df.head()"


def test_extract_selection_empty_and_reversed():
    assert extract_selection(SOURCE, (1, 3), (1, 3)) == ""
    assert extract_selection(SOURCE, (1, 2), (1, 0)) == "df"


def test_extract_selection_past_end():
    assert extract_selection("x = 1", (0, 0), (5, 0)) == "x = 1"


def test_notebook_cell_lookup_and_selection():
    nb = InMemoryNotebook("nb.ipynb", [CellRecord(id="c1", source=SOURCE)])

    nb.select("c1", (1, 0), (1, 2))

    assert nb.cell_source("c1") == SOURCE
    assert nb.cell_source("missing") is None
    assert nb.selection("c1") == "df"
    assert nb.selection("missing") == ""


def test_set_cells_prunes_state_of_removed_cells():
    nb = InMemoryNotebook("nb.ipynb", [CellRecord(id="c1", source="x"), CellRecord(id="c2")])
    nb.set_error_output("c1", ["NameError"])
    nb.set_error_output("c2", ["KeyError"])

    nb.set_cells([CellRecord(id="c2", source="y")])

    assert nb.error_output("c1") is None
    assert nb.error_output("c2") == ["KeyError"]
    nb.clear_error_output("c2")
    assert nb.error_output("c2") is None


@pytest.mark.asyncio
async def test_describe_variable_uses_inspector():
    async def inspector(name):
        return f"DataFrame named {name}"

    assert await InMemoryNotebook("nb.ipynb").describe_variable("df") is None
    nb = InMemoryNotebook("nb.ipynb", variable_inspector=inspector)
    assert await nb.describe_variable("df") == "DataFrame named df"


@pytest.mark.asyncio
async def test_variables_back_listing_and_description():
    nb = InMemoryNotebook("nb.ipynb", variables={"df": "DataFrame (3 rows)"})

    assert await nb.list_variables() == ["df"]
    assert await nb.describe_variable("df") == "DataFrame (3 rows)"
    assert await nb.describe_variable("missing") is None

    nb.set_variables({"x": "int"})
    assert await nb.list_variables() == ["x"]
    assert await nb.describe_variable("df") is None

from acopilot.utils.split_fields import split_fields


def test_split_fields_handles_commas_and_semicolons() -> None:
    assert split_fields("paper, glue; tape") == ["paper", "glue", "tape"]


def test_split_fields_flattens_sequences() -> None:
    assert split_fields(["crayons,markers", "scissors"]) == ["crayons", "markers", "scissors"]


def test_split_fields_honours_limit_and_custom_delimiters() -> None:
    assert split_fields("a, b, c, d", limit=2) == ["a", "b"]
    assert split_fields("Cognitive: Counting, Sorting\nPhysical: Jumping", delimiters=r"\n") == [
        "Cognitive: Counting, Sorting",
        "Physical: Jumping",
    ]


def test_split_fields_handles_empty_values() -> None:
    assert split_fields(None) == []
    assert split_fields("") == []
    assert split_fields([None, ""]) == []

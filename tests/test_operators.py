from handoff.operators import OperatorRemoval


def test_add_normalizes_and_deduplicates(operators):
    first = operators.add("  Alice ")
    again = operators.add("ALICE")
    assert first.name == "alice"
    assert again.name == "alice"
    assert operators.list_names() == ["alice"]


def test_add_rejects_blank_name(operators):
    assert operators.add("   ") is None
    assert operators.list_names() == []


def test_find_and_exists(operators):
    operators.add("bob")
    assert operators.find("Bob").name == "bob"
    assert operators.exists("bob")
    assert not operators.exists("carol")
    assert operators.find("") is None


def test_remove_refused_with_live_assignment(operators, queue):
    operators.add("alice")
    queue.enqueue("u1", "u1-chat")
    queue.assign_next("alice")

    assert operators.remove("Alice") is OperatorRemoval.BUSY
    assert operators.exists("alice")

    queue.remove("u1")
    assert operators.remove("alice") is OperatorRemoval.REMOVED
    assert not operators.exists("alice")


def test_remove_unknown_or_invalid(operators):
    assert operators.remove("ghost") is OperatorRemoval.NOT_FOUND
    assert operators.remove(" ") is OperatorRemoval.INVALID


def test_reads_fail_toward_empty(operators, db):
    operators.add("alice")
    db.failing.add("*")
    assert operators.find("alice") is None
    assert operators.list_names() == []

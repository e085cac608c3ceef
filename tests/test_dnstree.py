from zonectl.dnstree import DomainTree


def test_wildcard_and_specific_names():
    tree = DomainTree()
    tree.add("example.com", "*.other")
    tree.add("example.com", "specific")
    tree.add("example.nl", "specific")

    assert tree.get("any.other.example.com")
    assert tree.get("specific.example.com")
    assert not tree.get("example.nl")
    assert not tree.get("other.nl")


def test_added_names_are_found_verbatim():
    names = ["@", "www", "a.b.c", "deep.er.name"]
    tree = DomainTree.from_names("example.com", names)
    for fqdn in ("example.com", "www.example.com", "a.b.c.example.com", "deep.er.name.example.com"):
        assert fqdn in tree
    assert "b.c.example.com" not in tree
    assert "x.www.example.com" not in tree


def test_wildcard_covers_its_node_and_everything_below():
    tree = DomainTree.from_names("example.com", ["*.dev"])
    assert tree.get("a.dev.example.com")
    assert tree.get("a.b.c.dev.example.com")
    assert tree.get("dev.example.com")
    assert not tree.get("example.com")
    assert not tree.get("prod.example.com")


def test_absolute_names_and_case():
    tree = DomainTree.from_names("example.com", ["Host.Example.NET."])
    assert tree.get("host.example.net.")
    assert not tree.get("host.example.com")
    assert not tree.get("net")

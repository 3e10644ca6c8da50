from sheetmerge.ods.tokenizer import TokenKind, decode_entities, local_name, tokenize


def test_tokenize_kinds_and_local_names():
    tokens = list(tokenize('<?xml version="1.0"?><a:root x:id="1"><b:leaf/>text</a:root>'))
    kinds = [t.kind for t in tokens]
    assert kinds == [TokenKind.OPEN, TokenKind.SELF_CLOSE, TokenKind.TEXT, TokenKind.CLOSE]
    assert [t.local for t in tokens if t.kind is not TokenKind.TEXT] == ["root", "leaf", "root"]
    assert tokens[0].get("id") == "1"
    assert tokens[2].text == "text"


def test_attributes_are_decoded_and_keyed_by_local_name():
    token = next(tokenize("<table:table-cell office:string-value='a &amp; b' table:number-columns-repeated=\"3\">"))
    assert token.get("string-value") == "a & b"
    assert token.get_int("number-columns-repeated") == 3
    assert token.get_int("number-rows-spanned") == 1


def test_get_int_rejects_non_positive_and_garbage():
    token = next(tokenize('<c a="0" b="x" c="-2"/>'))
    assert token.get_int("a") == 1
    assert token.get_int("b") == 1
    assert token.get_int("c", default=7) == 7


def test_comments_and_doctype_are_skipped_cdata_is_text():
    tokens = list(tokenize("<!-- note --><!DOCTYPE x><p><![CDATA[<raw>]]></p>"))
    assert [t.kind for t in tokens] == [TokenKind.OPEN, TokenKind.TEXT, TokenKind.CLOSE]
    assert tokens[1].text == "<raw>"


def test_text_entities_are_decoded():
    tokens = list(tokenize("<p>1 &lt; 2 &#x41;</p>"))
    assert tokens[1].text == "1 < 2 A"
    assert decode_entities("plain") == "plain"
    assert local_name("text:p") == "p"
    assert local_name("p") == "p"

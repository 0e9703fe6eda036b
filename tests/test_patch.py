import ast
import asyncio
import unittest

import pytest

from jitwire.compiler.ast_utils import child_array_of
from jitwire.compiler.exceptions import ComponentConfigError
from jitwire.runtime.component import ComponentInstance, ComponentOptions
from jitwire.runtime.options import RenderOptions
from jitwire.runtime.patch import (
    create_patch_function,
    optimize,
    patch_comment,
    patch_element,
    patch_node,
    patch_string_node,
    patch_text,
)
from jitwire.runtime.patch_context import ElementFrame, PatchContext, Step
from jitwire.runtime.render import render_to_string
from jitwire.runtime.vnode import (
    VNode,
    async_component,
    create_empty_vnode,
    create_string_vnode,
    create_text_vnode,
)

# --- Components --------------------------------------------------------------


def static_render(_vm, _c):
    return _c(
        "div",
        {"attrs": {"id": "app"}},
        [_c("h1", ["Title"]), _c("p", ["a", "b"])],
    )


StaticPage = ComponentOptions(name="static-page", render=static_render)


def greeting_render(_vm, _c):
    return _c("div", [_c("h1", ["Hello"]), _c("p", [_vm._v(_vm._s(_vm.user))])])


Greeting = ComponentOptions(name="greeting", render=greeting_render, props={"user": "guest"})


def item_list_render(_vm, _c):
    return _c(
        "main",
        [
            _c("h1", ["Items"]),
            _c("ul", [_vm._l(_vm.items, lambda item, index: _c("li", [_vm._v(item)]))]),
        ],
    )


ItemList = ComponentOptions(
    name="item-list", render=item_list_render, props={"items": []}
)


def note_render(_vm, _c):
    return _c("p", {"class": "note"}, ["static note"])


Note = ComponentOptions(
    name="note",
    render=note_render,
    styles={"note": {"ids": ["note"], "css": ".note{color:gray}"}},
)


def shell_render(_vm, _c):
    return _c("div", [_c("note")])


Shell = ComponentOptions(name="shell", render=shell_render, components={"note": Note})


def profile_render(_vm, _c):
    return _c("div", [_c("note"), _c("span", [_vm._v(_vm._s(_vm.user))])])


Profile = ComponentOptions(
    name="profile",
    render=profile_render,
    components={"note": Note},
    props={"user": "guest"},
)


def avatar_render(_vm, _c):
    return _c("img", {"attrs": {"src": _vm.src}})


Avatar = ComponentOptions(name="avatar", render=avatar_render, props={"src": "/default.png"})


def header_render(_vm, _c):
    return _c("header", [_c("h1", ["Site"]), _c("avatar", {"props": {"src": _vm.avatar}})])


Header = ComponentOptions(
    name="header",
    render=header_render,
    components={"avatar": Avatar},
    props={"avatar": "/default.png"},
)


def shout(value):
    return str(value).upper()


def shouting_render(_vm, _c):
    return _c("p", [_vm._v(shout(_vm.user))])


Shouting = ComponentOptions(name="shouting", render=shouting_render, props={"user": "guest"})


def handwritten_render(_vm, _c):
    if _vm.compact:
        return _c("small", ["compact"])
    return _c("p", [_vm._v(_vm._s(_vm.user))])


Handwritten = ComponentOptions(
    name="handwritten",
    render=handwritten_render,
    props={"compact": False, "user": "guest"},
)


def toggle_render(_vm, _c):
    return _c(
        "div",
        [
            _c("b", [_vm._v(_vm._s(_vm.user))]) if _vm.enabled else _vm._e(),
            _c("i", ["fixed"]),
        ],
    )


Toggle = ComponentOptions(
    name="toggle", render=toggle_render, props={"enabled": True, "user": "guest"}
)


def unknown_condition_render(_vm, _c):
    return _c("div", [_c("b", ["x"]) if missing_flag else _vm._e()])  # noqa: F821


def async_slot_render(_vm, _c):
    return _c("div", [_c(_vm.loader)])


def lazy_note_render(_vm, _c):
    return _c("div", [_c("lazy")])


def plain_render(_vm, _c):
    return _c("em", ["plain"])


Plain = ComponentOptions(name="plain", render=plain_render, functional=True)


def tag_render(_vm, _c):
    return _c(
        "span", [_c("b", [_vm._v(_vm._s(_vm.label))]), _c("i", [_vm._v(_vm._s(_vm.user))])]
    )


Tag = ComponentOptions(name="tag", render=tag_render, props={"label": "", "user": ""})


def tag_pair_render(_vm, _c):
    if _vm.compact:
        return _c("small", ["compact"])
    return _c(
        "div",
        [
            _c("tag", {"props": {"label": "A", "user": "x"}}),
            _c("tag", {"props": {"label": "B", "user": _vm.user}}),
        ],
    )


TagPair = ComponentOptions(
    name="tag-pair",
    render=tag_pair_render,
    components={"tag": Tag},
    props={"compact": False, "user": "guest"},
)


# --- Helpers -----------------------------------------------------------------


def run_optimize(component, static_props=None, props=None, options=None):
    static_vm = ComponentInstance(component, props=static_props)
    dynamic_vm = ComponentInstance(component, props=props)
    return asyncio.run(optimize(static_vm, dynamic_vm, options))


def render_with(component, tree, props=None):
    instance = ComponentInstance(component, props=props)
    return asyncio.run(render_to_string(instance, RenderOptions(), tree))


def make_context() -> PatchContext:
    return PatchContext(RenderOptions(), None, None, patch_node, done=lambda result: None)


def expr(source: str) -> ast.expr:
    return ast.parse(source, mode="eval").body


# --- Classifier --------------------------------------------------------------


class TestClassifier(unittest.TestCase):
    def setUp(self) -> None:
        self.context = make_context()
        self.annotations = self.context.annotations

    def annotation(self, node: VNode):
        return self.annotations.peek(self.annotations.ast_for(node))

    def test_equal_text_folds_escaped(self) -> None:
        static, dynamic = create_text_vnode("a<b"), create_text_vnode("a<b")
        self.assertIs(patch_text(static, dynamic, self.context), Step.CONTINUE)
        self.assertEqual(self.annotation(static).ssr_string, "a&lt;b")
        self.assertTrue(self.annotation(static).ssr_static)

    def test_equal_raw_text_folds_verbatim(self) -> None:
        static = create_text_vnode("<b>x</b>", raw=True)
        dynamic = create_text_vnode("<b>x</b>", raw=True)
        patch_text(static, dynamic, self.context)
        self.assertEqual(self.annotation(static).ssr_string, "<b>x</b>")

    def test_different_text_does_not_fold(self) -> None:
        static, dynamic = create_text_vnode("guest"), create_text_vnode("Ada")
        self.assertIs(patch_text(static, dynamic, self.context), Step.CONTINUE)
        annotation = self.annotation(static)
        self.assertFalse(annotation is not None and annotation.ssr_static)

    def test_equal_comment(self) -> None:
        static, dynamic = create_empty_vnode("note"), create_empty_vnode("note")
        patch_comment(static, dynamic, self.context)
        self.assertEqual(self.annotation(static).ssr_string, "<!--note-->")

    def test_string_fragment_compares_trimmed(self) -> None:
        static = create_string_vnode("<hr>")
        dynamic = create_string_vnode("<hr>\n")
        patch_string_node(static, dynamic, self.context)
        self.assertEqual(self.annotation(static).ssr_string, "<hr>")

        other = create_string_vnode("<br>")
        patch_string_node(create_string_vnode("<hr>"), other, self.context)
        self.assertEqual(len(self.context.frames), 0)

    def test_string_fragment_with_children_pushes_frame(self) -> None:
        static = create_string_vnode("<p>", "</p>", [create_text_vnode("x")])
        dynamic = create_string_vnode("<p>", "</p>", [create_text_vnode("y")])
        patch_string_node(static, dynamic, self.context)
        self.assertEqual(len(self.context.frames), 1)
        self.assertEqual(self.context.frames[0].end_tag, "</p>")

    def test_unary_element(self) -> None:
        static = VNode(tag="br")
        dynamic = VNode(tag="br")
        patch_element(static, dynamic, self.context)
        self.assertEqual(self.annotation(static).ssr_string, "<br>")

    def test_empty_element(self) -> None:
        static = VNode(tag="div", data={"attrs": {"id": "x"}})
        dynamic = VNode(tag="div", data={"attrs": {"id": "x"}})
        patch_element(static, dynamic, self.context)
        self.assertEqual(self.annotation(static).ssr_string, '<div id="x"></div>')

    def test_different_start_tags(self) -> None:
        static = VNode(tag="div", data={"attrs": {"id": "x"}})
        dynamic = VNode(tag="div", data={"attrs": {"id": "y"}})
        patch_element(static, dynamic, self.context)
        self.assertIsNone(self.annotation(static).ssr_string)

    def test_child_count_mismatch_is_conservative(self) -> None:
        static = VNode(tag="ul", children=[VNode(tag="li")])
        dynamic = VNode(tag="ul", children=[VNode(tag="li"), VNode(tag="li")])
        self.assertIs(patch_element(static, dynamic, self.context), Step.CONTINUE)
        self.assertEqual(self.context.frames, [])
        self.assertIsNone(self.annotation(static).ssr_string)

    def test_kind_mismatch_never_folds(self) -> None:
        static = create_text_vnode("x")
        dynamic = VNode(tag="span")
        self.assertIs(patch_node(static, dynamic, self.context), Step.CONTINUE)
        self.assertIsNone(self.annotations.peek(self.annotations.ast_for(static)).ssr_string)


# --- Folding -----------------------------------------------------------------


class TestFolding(unittest.TestCase):
    def setUp(self) -> None:
        self.context = make_context()
        self.annotations = self.context.annotations

    def element_frame(self, source: str, literals, start: str, end: str) -> ElementFrame:
        node = expr(source)
        children = [create_text_vnode(text) for text in literals]
        for child, element in zip(children, child_array_of(node).elts):
            self.annotations.bind(child, element)
            annotation = self.annotations.of(element)
            annotation.ssr_string = element.value
            annotation.ssr_static = True
        self.annotations.of(node).ssr_string = start
        return ElementFrame(children, children, node, len(children), end)

    def test_literal_concatenation(self) -> None:
        frame = self.element_frame("_c('p', ['a', 'b'])", ["a", "b"], "<p>", "</p>")
        self.context.fold_element(frame)

        annotation = self.annotations.of(frame.ast)
        self.assertEqual(annotation.ssr_string, "<p>ab</p>")
        self.assertTrue(annotation.ssr_static)
        self.assertEqual(ast.unparse(frame.ast), "_vm._ssr_node('<p>ab</p>')")

    def test_folding_is_idempotent(self) -> None:
        frame = self.element_frame("_c('p', ['a', 'b'])", ["a", "b"], "<p>", "</p>")
        self.context.fold_element(frame)
        self.context.fold_element(frame)

        self.assertEqual(self.annotations.of(frame.ast).ssr_string, "<p>ab</p>")
        self.assertEqual(ast.unparse(frame.ast), "_vm._ssr_node('<p>ab</p>')")

    def test_dynamic_child_keeps_expression(self) -> None:
        node = expr("_c('p', ['a', _vm._v(_vm._s(_vm.x)), 'b', 'c'])")
        elements = child_array_of(node).elts
        children = [create_text_vnode(t) for t in ("a", "?", "b", "c")]
        for child, element in zip(children, elements):
            self.annotations.bind(child, element)
        for index in (0, 2, 3):
            annotation = self.annotations.of(elements[index])
            annotation.ssr_string = elements[index].value
            annotation.ssr_static = True
        self.annotations.of(node).ssr_string = "<p>"

        self.context.fold_element(ElementFrame(children, children, node, 4, "</p>"))

        self.assertEqual(
            ast.unparse(node),
            "_c('p', [_vm._ssr_node('a'), _vm._v(_vm._s(_vm.x)), _vm._ssr_node('bc')])",
        )
        self.assertFalse(self.annotations.of(node).ssr_static)

    def test_unmatched_node_folds_annotation_only(self) -> None:
        node = self.annotations.placeholder()
        child = create_text_vnode("x")
        placeholder = self.annotations.placeholder()
        self.annotations.bind(child, placeholder)
        self.annotations.of(placeholder).ssr_string = "x"
        self.annotations.of(placeholder).ssr_static = True
        self.annotations.of(node).ssr_string = "<li>"

        self.context.fold_element(ElementFrame([child], [child], node, 1, "</li>"))

        self.assertEqual(self.annotations.of(node).ssr_string, "<li>x</li>")
        self.assertTrue(self.annotations.of(node).ssr_static)

    def test_reduce_children_merges_lone_text_child(self) -> None:
        node = expr("_vm._ssr_node('<p>', '</p>', [_vm._ssr_node(_vm._s(x))])")
        child = create_text_vnode("?")
        frame = ElementFrame([child], [child], node, 1, "</p>")

        self.context.reduce_children(frame)

        self.assertEqual(
            ast.unparse(node), "_vm._ssr_node('<p>' + _vm._s(x) + '</p>')"
        )


# --- Whole passes ------------------------------------------------------------


class TestOptimize(unittest.TestCase):
    def test_fully_static_page(self) -> None:
        result = run_optimize(StaticPage)
        literal = (
            '<div id="app" data-server-rendered="true">'
            "<h1>Title</h1><p>ab</p></div>"
        )
        self.assertTrue(result.success)
        self.assertTrue(result.render_tree.static)
        self.assertEqual(result.render_tree.render(None, None), literal)
        self.assertIsNone(result.render_tree.children)
        self.assertIsInstance(result.static_ast, ast.Module)

    def test_dynamic_text_stays_dynamic(self) -> None:
        result = run_optimize(Greeting, props={"user": "Ada"})
        tree = result.render_tree

        self.assertFalse(tree.static)
        self.assertIn("_vm._ssr_node('<h1>Hello</h1>')", tree.source)
        self.assertIn("_vm._s(_vm.user)", tree.source)
        self.assertEqual(
            render_with(Greeting, tree, {"user": "Bob"}),
            render_with(Greeting, None, {"user": "Bob"}),
        )

    def test_child_count_mismatch_continues(self) -> None:
        result = run_optimize(ItemList, props={"items": ["a", "b"]})
        tree = result.render_tree

        self.assertIn("_vm._ssr_node('<h1>Items</h1>')", tree.source)
        self.assertIn("_vm._l(", tree.source)
        self.assertEqual(
            render_with(ItemList, tree, {"items": ["x"]}),
            render_with(ItemList, None, {"items": ["x"]}),
        )

    def test_static_child_styles_are_hoisted(self) -> None:
        tree = run_optimize(Shell).render_tree

        self.assertTrue(tree.static)
        self.assertIsNone(tree.children)
        self.assertIn("note", tree.styles)
        self.assertEqual(
            tree.render(None, None),
            '<div data-server-rendered="true"><p class="note">static note</p></div>',
        )

    def test_static_child_inside_dynamic_parent(self) -> None:
        tree = run_optimize(Profile, props={"user": "Ada"}).render_tree

        self.assertFalse(tree.static)
        self.assertIsNone(tree.children)
        self.assertIn("note", tree.styles)
        self.assertIn("_vm._ssr_node('<p class=\"note\">static note</p>')", tree.source)
        self.assertEqual(
            render_with(Profile, tree, {"user": "Bob"}),
            render_with(Profile, None, {"user": "Bob"}),
        )

    def test_dynamic_child_gets_own_slot(self) -> None:
        tree = run_optimize(Header, props={"avatar": "/ada.png"}).render_tree

        self.assertEqual(len(tree.children), 1)
        slot = tree.children[0]
        self.assertEqual(slot.name, "avatar")
        self.assertFalse(slot.static)
        self.assertIsNotNone(slot.render)
        self.assertEqual(
            render_with(Header, tree, {"avatar": "/bob.png"}),
            render_with(Header, None, {"avatar": "/bob.png"}),
        )

    def test_validation_failure_falls_back(self) -> None:
        tree = run_optimize(Shouting, props={"user": "Ada"}).render_tree

        self.assertIs(tree.render, shouting_render)
        self.assertFalse(tree.static)
        self.assertIsNone(tree.source)
        self.assertEqual(
            render_with(Shouting, tree, {"user": "bob"}),
            '<p data-server-rendered="true">BOB</p>',
        )

    def test_validation_can_be_disabled(self) -> None:
        tree = run_optimize(
            Greeting, props={"user": "Ada"}, options=RenderOptions(validate=False)
        ).render_tree
        self.assertIsNotNone(tree.source)

    def test_handwritten_render_is_kept(self) -> None:
        tree = run_optimize(Handwritten, props={"user": "Ada"}).render_tree
        self.assertIs(tree.render, handwritten_render)
        self.assertFalse(tree.static)

    def test_handwritten_render_can_still_be_static(self) -> None:
        tree = run_optimize(Handwritten).render_tree
        self.assertTrue(tree.static)
        self.assertEqual(
            tree.render(None, None), '<p data-server-rendered="true">guest</p>'
        )

    def test_static_children_of_original_render_keep_their_slots(self) -> None:
        tree = run_optimize(TagPair, props={"user": "Ada"}).render_tree

        # The parent keeps its own render, which still creates both children
        self.assertEqual(tree.source, None)
        self.assertEqual([child.static for child in tree.children], [True, False])
        props = {"user": "Bob"}
        self.assertEqual(
            render_with(TagPair, tree, props), render_with(TagPair, None, props)
        )

    def test_conditional_child_keeps_condition(self) -> None:
        tree = run_optimize(Toggle, props={"user": "Ada"}).render_tree

        self.assertIn("if _vm.enabled else _vm._e()", tree.source)
        self.assertIn("_vm._ssr_node('<i>fixed</i>')", tree.source)
        for props in ({"enabled": False}, {"enabled": True, "user": "Bob"}):
            self.assertEqual(render_with(Toggle, tree, props), render_with(Toggle, None, props))

    def test_unevaluable_condition_degrades(self) -> None:
        page = ComponentOptions(
            name="unknown", render=unknown_condition_render, props={}
        )
        static_vm = ComponentInstance(page)
        # Both passes need to render; give the render function its global
        unknown_condition_render.__globals__["missing_flag"] = True
        try:
            result = asyncio.run(optimize(static_vm, ComponentInstance(page)))
        finally:
            del unknown_condition_render.__globals__["missing_flag"]
        self.assertTrue(result.success)


class TestPrefetch(unittest.TestCase):
    def test_prefetch_runs_on_both_instances(self) -> None:
        seen = []

        async def load(vm):
            await asyncio.sleep(0)
            seen.append(vm)
            vm.state["user"] = "loaded"

        page = ComponentOptions(
            name="prefetched", render=greeting_render, server_prefetch=[load]
        )
        tree = run_optimize(page).render_tree

        self.assertEqual(len(seen), 2)
        self.assertIsNot(seen[0], seen[1])
        self.assertTrue(tree.static)
        self.assertIn("<p>loaded</p>", tree.render(None, None))

    def test_async_prefetch_failure_aborts(self) -> None:
        async def fail(vm):
            raise RuntimeError("boom")

        page = ComponentOptions(
            name="failing", render=greeting_render, server_prefetch=[fail]
        )
        with self.assertRaises(RuntimeError):
            run_optimize(page)

    def test_failed_prefetch_cancels_the_others(self) -> None:
        finished = []

        async def fail(vm):
            raise RuntimeError("boom")

        async def slow(vm):
            await asyncio.sleep(0.05)
            finished.append(vm)

        page = ComponentOptions(
            name="failing",
            render=greeting_render,
            props={"user": "guest"},
            server_prefetch=[fail, slow],
        )

        async def main():
            with self.assertRaises(RuntimeError):
                await optimize(ComponentInstance(page), ComponentInstance(page))
            await asyncio.sleep(0.1)

        asyncio.run(main())
        self.assertEqual(finished, [])

    def test_sync_prefetch_failure_aborts(self) -> None:
        def fail(vm):
            raise RuntimeError("boom")

        page = ComponentOptions(
            name="failing", render=greeting_render, server_prefetch=[fail]
        )
        with self.assertRaises(RuntimeError):
            run_optimize(page)

    def test_missing_render_is_fatal(self) -> None:
        page = ComponentOptions(
            name="parent",
            render=shell_render,
            components={"note": ComponentOptions(name="empty")},
        )
        with self.assertRaises(ComponentConfigError) as ctx:
            run_optimize(page)
        self.assertEqual(ctx.exception.component_name, "empty")


class TestAsyncComponents(unittest.TestCase):
    def test_resolved_component_is_optimized(self) -> None:
        async def load():
            return Note

        page = ComponentOptions(
            name="lazy-note",
            render=lazy_note_render,
            components={"lazy": async_component(lambda resolve, reject: load())},
        )
        tree = run_optimize(page).render_tree

        self.assertTrue(tree.static)
        self.assertIn("note", tree.styles)
        self.assertEqual(
            tree.render(None, None),
            '<div data-server-rendered="true"><p class="note">static note</p></div>',
        )

    def test_asymmetric_resolution_renders_nothing(self) -> None:
        to_component = async_component(lambda resolve, reject: resolve(Note))
        to_node = async_component(lambda resolve, reject: resolve(Plain))
        page = ComponentOptions(name="async-slot", render=async_slot_render)

        result = run_optimize(
            page, static_props={"loader": to_component}, props={"loader": to_node}
        )

        self.assertTrue(result.success)
        self.assertEqual(
            result.render_tree.render(None, None),
            '<div data-server-rendered="true"><!----></div>',
        )

    def test_unsettled_factory_renders_nothing(self) -> None:
        page = ComponentOptions(
            name="lazy-note",
            render=lazy_note_render,
            components={"lazy": async_component(lambda resolve, reject: None)},
        )
        result = run_optimize(page)

        self.assertTrue(result.success)
        self.assertEqual(
            result.render_tree.render(None, None),
            '<div data-server-rendered="true"><!----></div>',
        )
        self.assertEqual(render_with(page, None), render_with(page, result.render_tree))

    def test_rejected_factory_aborts(self) -> None:
        page = ComponentOptions(
            name="lazy-note",
            render=lazy_note_render,
            components={
                "lazy": async_component(lambda resolve, reject: reject("offline"))
            },
        )
        with self.assertRaises(RuntimeError):
            run_optimize(page)


def test_done_fires_exactly_once():
    results = []

    async def main():
        async def fail(vm):
            raise RuntimeError("boom")

        page = ComponentOptions(
            name="failing", render=greeting_render, server_prefetch=[fail, fail]
        )
        patch = create_patch_function(RenderOptions())
        patch(ComponentInstance(page), ComponentInstance(page), results.append)
        for _ in range(100):
            await asyncio.sleep(0)

    asyncio.run(main())
    assert len(results) == 1
    assert not results[0].success
    assert isinstance(results[0].error, RuntimeError)


def test_done_fires_once_on_success():
    results = []

    async def main():
        patch = create_patch_function()
        patch(ComponentInstance(StaticPage), ComponentInstance(StaticPage), results.append)
        await asyncio.sleep(0)

    asyncio.run(main())
    assert [r.success for r in results] == [True]


def test_deep_trees_do_not_recurse():
    depth = 3000

    def nested(_vm, _c):
        node = _c("span", ["leaf"])
        for _ in range(depth):
            node = _c("div", [node])
        return node

    page = ComponentOptions(name="deep", render=nested)
    result = run_optimize(page)
    # Hand-written render: folded through annotations only
    assert result.render_tree.static
    assert result.render_tree.render(None, None).endswith("</div>" * depth)


@pytest.mark.parametrize("user", ["guest", "Ada"])
def test_markup_matches_baseline(user):
    for page in (Greeting, Profile, Header, Toggle, StaticPage):
        tree = run_optimize(page, props={"user": user}).render_tree
        props = {"user": user}
        assert render_with(page, tree, props) == render_with(page, None, props)


def test_dynamic_parts_follow_new_props():
    # Props that differed during analysis stay live in the optimized render
    for page in (Greeting, Profile, Toggle):
        tree = run_optimize(page, props={"user": "Ada"}).render_tree
        props = {"user": "Grace"}
        assert render_with(page, tree, props) == render_with(page, None, props)

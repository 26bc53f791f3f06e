"""Built-in page tools.

Sensitive tools change the page or the browser state in ways the user should
see before they happen: clicking, typing, selecting, navigating, dragging,
context menus and opening tabs. Inspection, extraction, waiting, scrolling,
hovering, screenshots and tab bookkeeping run without approval.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from pagepilot.tools.schema import TabArguments, ToolArguments, ToolDescriptor, ToolTarget

# Upper bound for the local sleep tool (milliseconds)
MAX_SLEEP_MS = 60_000


class SelectorArguments(TabArguments):
    selector: str = Field(min_length=1, description="CSS selector for the element")


class InputTextArguments(SelectorArguments):
    text: str = Field(description="Text to type into the field")


class SelectOptionArguments(SelectorArguments):
    value: str = Field(description="Value or visible text of the option to select")


class ScrollArguments(TabArguments):
    direction: Literal["up", "down", "left", "right"] = Field(description="Direction to scroll")
    amount: int = Field(default=300, gt=0, description="Pixels to scroll")


class NavigateArguments(TabArguments):
    url: str = Field(min_length=1, description="URL to navigate to")


class DragAndDropArguments(TabArguments):
    source_selector: str = Field(min_length=1, description="CSS selector for the element to drag")
    target_selector: str = Field(min_length=1, description="CSS selector for the drop target")


class ExtractAttributeArguments(SelectorArguments):
    attribute: str = Field(min_length=1, description="Attribute name, e.g. 'href' or 'src'")


class WaitForElementArguments(SelectorArguments):
    timeout: int = Field(default=5000, gt=0, description="Maximum wait in milliseconds")


class WaitForPageLoadArguments(TabArguments):
    timeout: int = Field(default=10000, gt=0, description="Maximum wait in milliseconds")


class ScreenshotArguments(TabArguments):
    full_page: bool = Field(default=False, description="Capture the full page, not just the viewport")


class OpenTabArguments(TabArguments):
    url: str | None = Field(default=None, description="URL to open in the new tab")


class SleepArguments(ToolArguments):
    duration: int = Field(ge=0, le=MAX_SLEEP_MS, description="Time to wait in milliseconds")


class AssistanceArguments(ToolArguments):
    type: Literal["captcha", "login", "confirmation", "custom"] = Field(
        description="Kind of help needed"
    )
    message: str = Field(min_length=1, description="What the user should do")
    context: Any = Field(default=None, description="Extra details for the user")


class NoArguments(ToolArguments):
    pass


class SwitchTabArguments(ToolArguments):
    tab_id: str = Field(min_length=1, description="Page context (tab) id to make active")


def _remote(name: str, description: str, schema: type[ToolArguments], sensitive: bool = False):
    return ToolDescriptor(name, description, schema, sensitive, ToolTarget.REMOTE)


def _local(name: str, description: str, schema: type[ToolArguments]):
    return ToolDescriptor(name, description, schema, False, ToolTarget.LOCAL)


BUILTIN_TOOLS: tuple[ToolDescriptor, ...] = (
    # Inspection
    _remote("get_page_dom", "Get the current page DOM structure and visible elements", TabArguments),
    _remote("find_elements", "Find elements on the page using a CSS selector", SelectorArguments),
    # Interaction
    _remote("click_element", "Click an element", SelectorArguments, sensitive=True),
    _remote("input_text", "Type text into a form field or text area", InputTextArguments, sensitive=True),
    _remote("select_option", "Select an option in a dropdown", SelectOptionArguments, sensitive=True),
    _remote("scroll_page", "Scroll the page in a direction", ScrollArguments),
    _remote("drag_and_drop", "Drag an element onto a drop target", DragAndDropArguments, sensitive=True),
    _remote("hover_element", "Hover over an element to trigger hover effects", SelectorArguments),
    _remote("right_click_element", "Right-click an element to open its context menu", SelectorArguments, sensitive=True),
    # Navigation
    _remote("navigate_to_url", "Navigate to a URL", NavigateArguments, sensitive=True),
    _remote("go_back", "Go back to the previous page", TabArguments, sensitive=True),
    _remote("go_forward", "Go forward to the next page", TabArguments, sensitive=True),
    _remote("refresh_page", "Reload the current page", TabArguments, sensitive=True),
    _remote("open_new_tab", "Open a new tab, optionally at a URL, and switch to it", OpenTabArguments, sensitive=True),
    # Extraction
    _remote("extract_text", "Extract the text content of an element", SelectorArguments),
    _remote("extract_attribute", "Extract an attribute value from an element", ExtractAttributeArguments),
    _remote("extract_table_data", "Extract rows from a table element", SelectorArguments),
    # Waiting and capture
    _remote("wait_for_element", "Wait for an element to appear", WaitForElementArguments),
    _remote("wait_for_page_load", "Wait for the page to finish loading", WaitForPageLoadArguments),
    _remote("take_screenshot", "Take a screenshot of the page or viewport", ScreenshotArguments),
    # Local
    _local("sleep", "Wait for a fixed time", SleepArguments),
    _local(
        "request_human_assistance",
        "Ask the user to handle a captcha, login or decision",
        AssistanceArguments,
    ),
    _local("get_tabs_list", "List connected tabs with their ids, titles and URLs", NoArguments),
    _local("switch_to_tab", "Make another connected tab the active one", SwitchTabArguments),
)

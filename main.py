import os
import sys
import uuid
import argparse
import logging
from langgraph.graph import StateGraph, START, END
from dotenv import load_dotenv

# Import State
from state import SalesPackState

# Import Nodes
from nodes.classifier import sales_pack_analyzer_node
from nodes.editor import apply_edits
from nodes.splitter import pdf_splitter_node
from nodes.uploader import document_uploader_node

# Load Env
load_dotenv()

logger = logging.getLogger(__name__)


def human_review_node(state: SalesPackState):
    """
    Node: Human In The Loop

    Applies the reviewer's queued edits to the suggested partition.
    Compile with interrupt_before_review=True to pause here until a
    reviewer has queued their edits in `pending_edits`.
    """
    print("--- NODE: Human Review (Breakpoint) ---")
    edits = state.get("pending_edits") or []
    partition = state.get("partition")

    if partition is None:
        return {"stage": "failed", "error": "Nothing to review: no partition"}

    try:
        partition = apply_edits(partition, edits)
    except (KeyError, ValueError) as e:
        logger.error(f"Invalid review edit: {e}")
        return {"stage": "failed", "error": f"Invalid review edit: {e}"}

    if edits:
        print(f"   Applied {len(edits)} edit(s), {len(partition)} document(s) remain")
    return {"partition": partition, "pending_edits": [], "stage": "splitting"}


def build_graph(checkpointer=None, interrupt_before_review: bool = False):
    builder = StateGraph(SalesPackState)

    # Add Nodes
    builder.add_node("analyzer", sales_pack_analyzer_node)
    builder.add_node("human_review", human_review_node)
    builder.add_node("splitter", pdf_splitter_node)
    builder.add_node("uploader", document_uploader_node)

    # Add Edges
    builder.add_edge(START, "analyzer")

    def check_analysis(state):
        if state.get("stage") == "failed":
            return END
        return "human_review"

    builder.add_conditional_edges("analyzer", check_analysis)

    def check_review(state):
        if state.get("stage") == "failed":
            return END
        return "splitter"

    builder.add_conditional_edges("human_review", check_review)

    def check_split(state):
        if state.get("stage") == "failed":
            return END
        return "uploader"

    builder.add_conditional_edges("splitter", check_split)
    builder.add_edge("uploader", END)

    return builder.compile(
        checkpointer=checkpointer,
        interrupt_before=["human_review"] if interrupt_before_review else None,
    )


def main(argv=None):
    parser = argparse.ArgumentParser(description="Split a dealership sales pack into customer documents")
    parser.add_argument("pdf", help="Path to the sales pack PDF")
    parser.add_argument("--customer", default=os.getenv("CUSTOMER_NAME", ""), help="Customer to file documents under")
    args = parser.parse_args(argv)

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

    graph = build_graph()

    initial_state: SalesPackState = {
        "session_id": uuid.uuid4().hex[:12],
        "stage": "analyzing",
        "error": None,
        "customer_name": args.customer,
        "source_pdf_path": args.pdf,
        "pending_edits": [],
    }

    print("Starting Graph Execution...")
    final_state = graph.invoke(initial_state)

    if final_state.get("stage") == "failed":
        print(f"Pipeline failed: {final_state.get('error')}")
        return 1

    summary = final_state.get("upload_summary")
    print("Execution Complete.")
    if summary is not None:
        print(summary.message)
        for failure in summary.failures:
            print(f"   ✗ {failure.filename}: {failure.error_message}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

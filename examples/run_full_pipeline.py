"""
Run the full pipeline against a folder of PDFs for testing/debugging.

Usage:
    python examples/run_full_pipeline.py sample_pdfs/
"""
import glob
import os
import sys

# Add parent directory to path for construction_qa import
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from construction_qa import ConstructionQAPipeline, Settings, configure_logging

pdf_dir = sys.argv[1] if len(sys.argv) > 1 else "sample_pdfs"

print("=" * 60)
print("CONSTRUCTION QA - FULL PIPELINE TEST")
print("=" * 60)

# Step 1: Configuration
settings = Settings()
configure_logging(settings.LOG_LEVEL)
print(f"\n[1] OpenAI API key: {'Set' if settings.OPENAI_API_KEY else 'Not set'}")
print(f"    Anthropic API key: {'Set' if settings.ANTHROPIC_API_KEY else 'Not set'}")
print(f"    Database: {settings.DATABASE_URL}")

# Step 2: Initialize pipeline
print("\n[2] Initializing pipeline...")
pipeline = ConstructionQAPipeline.from_settings(settings)
for model in pipeline.available_models():
    status = "available" if model["available"] else "no API key"
    print(f"    {model['id']:<18} {model['name']:<18} {status}")

# Step 3: Register documents
pdf_paths = sorted(glob.glob(os.path.join(pdf_dir, "*.pdf")))
print(f"\n[3] Found {len(pdf_paths)} PDFs in {pdf_dir}")
if not pdf_paths:
    sys.exit(0)

project_id = pipeline.create_project(os.path.basename(os.path.abspath(pdf_dir)))
for path in pdf_paths:
    name = os.path.basename(path)
    document_type = "spec" if "spec" in name.lower() else "drawing"
    pipeline.add_document(project_id, name, path, document_type=document_type)
    print(f"      - {name} ({document_type})")

# Step 4: Chunk documents
print("\n[4] Processing documents (this may take a while)...")
results = pipeline.process_project(project_id)

successful = sum(1 for r in results if r.success)
total_chunks = sum(len(r.chunks) for r in results)
total_callouts = sum(r.callouts_created for r in results)
print(f"    Documents processed: {successful}/{len(results)}")
print(f"    Total chunks: {total_chunks}")
print(f"    Total callouts: {total_callouts}")
for r in results:
    if not r.success:
        print(f"    FAILED {r.filename}: {r.error}")

sheets = [c.sheet_number for r in results for c in r.chunks if c.sheet_number]
print(f"    Sheets found: {', '.join(sheets[:15])}{' ...' if len(sheets) > 15 else ''}")

# Step 5: Embed
print("\n[5] Embedding chunks...")
report = pipeline.embed_project(
    project_id,
    on_progress=lambda done, total: print(f"    {done}/{total}")
)
print(f"    Embedded: {report.processed}/{report.total}")
if report.paused:
    print("    Paused: embedding quota exhausted, re-run later to resume")
if report.failed_items:
    print(f"    Failed items: {report.failed_items}")

# Step 6: Ask questions
print("\n[6] Questions:")
questions = [
    "What is the fire rating of the corridor doors?",
    "Which sheets show the roof drains?",
    "Compare the wall types at the stair and the corridor",
]

chat = pipeline.create_chat(project_id)
for question in questions:
    print(f"\n    Q: {question}")
    reply = pipeline.answer_question(chat["id"], question)
    print(f"    A: {reply['content'][:300]}")
    for citation in reply["citations"]:
        print(f"       {citation['fullText']} -> page {citation['page']}")

# Step 7: Stats
print("\n[7] Project stats:")
for key, value in pipeline.get_stats(project_id).items():
    print(f"    {key}: {value}")

print(f"\n    Chat title: {pipeline.store.get_chat(chat['id'])['title']}")
print("\n" + "=" * 60)
print("DONE")
print("=" * 60)

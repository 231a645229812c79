#!/usr/bin/env python3
"""
Gridbook Desktop — grid editor

Lists tables, shows the selected table as an editable grid and talks to
the Gridbook API. Optionally starts the API server in a background thread.
"""

import tkinter as tk
from tkinter import messagebox, simpledialog, ttk
import logging
import os
import sys
import threading
import time

from gridbook import __version__
from gridbook_core import GridbookClient, ClientError, ApiError, BulkDeleteError

from .field_schema import FIELD_TYPES
from .grid_controller import GridController
from .grid_state import Blur, Click, Editing, Escape, Input, Key, MouseDown, MouseMove, MouseUp

logger = logging.getLogger(__name__)

CELL_WIDTH = 18
COLORS = {
    'cell': "#ffffff",
    'drag': "#BBDEFB",
    'error': "#FFCDD2",
    'header': "#E3F2FD",
}


class TkLogHandler(logging.Handler):
    """Forward log records to the status bar."""

    def __init__(self, show_fn):
        super().__init__()
        self.show_fn = show_fn

    def emit(self, record):
        try:
            msg = self.format(record)
            tag = "ERROR" if record.levelno >= logging.ERROR else (
                "WARNING" if record.levelno >= logging.WARNING else "INFO")
            self.show_fn(msg, tag)
        except Exception:
            self.handleError(record)


class FieldDialog(tk.Toplevel):
    """Create or edit a field. ``on_delete`` enables the Delete button."""

    def __init__(self, parent, title, on_save, field=None, on_delete=None):
        super().__init__(parent)
        self.title(title)
        self.transient(parent)
        self.resizable(False, False)
        self.on_save = on_save
        self.on_delete = on_delete

        tk.Label(self, text="Name").grid(row=0, column=0, sticky="w", padx=8, pady=4)
        self.name_var = tk.StringVar(value=field.name if field else "")
        tk.Entry(self, textvariable=self.name_var, width=30).grid(row=0, column=1, padx=8, pady=4)

        tk.Label(self, text="Type").grid(row=1, column=0, sticky="w", padx=8, pady=4)
        self.type_var = tk.StringVar(value=field.type if field else "text")
        ttk.Combobox(self, textvariable=self.type_var, values=FIELD_TYPES,
                     state="readonly", width=27).grid(row=1, column=1, padx=8, pady=4)

        tk.Label(self, text="Options").grid(row=2, column=0, sticky="w", padx=8, pady=4)
        options = ", ".join(field.options) if field and field.options else ""
        self.options_var = tk.StringVar(value=options)
        tk.Entry(self, textvariable=self.options_var, width=30).grid(row=2, column=1, padx=8, pady=4)
        tk.Label(self, text="comma-separated, multiple choice only", fg="#888",
                 font=("Arial", 8)).grid(row=3, column=1, sticky="w", padx=8)

        self.error_label = tk.Label(self, text="", fg="red", wraplength=260, justify="left")
        self.error_label.grid(row=4, column=0, columnspan=2, sticky="w", padx=8)

        buttons = tk.Frame(self)
        buttons.grid(row=5, column=0, columnspan=2, pady=8)
        tk.Button(buttons, text="Save", width=8, command=self._save).pack(side="left", padx=2)
        if on_delete:
            tk.Button(buttons, text="Delete", width=8, fg="white", bg="#f44336",
                      command=self._delete).pack(side="left", padx=2)
        tk.Button(buttons, text="Cancel", width=8, command=self.destroy).pack(side="left", padx=2)
        self.grab_set()

    def _save(self):
        options = None
        if self.type_var.get() == "multiple_choice":
            options = self.options_var.get().split(",")
        try:
            self.on_save(self.name_var.get(), self.type_var.get(), options)
        except ApiError as e:
            detail = "\n".join(e.errors.values()) if e.errors else e.message
            self.error_label.config(text=detail)
            return
        except ClientError as e:
            self.error_label.config(text=str(e))
            return
        self.destroy()

    def _delete(self):
        if not messagebox.askyesno("Delete Field",
                                   "Delete this field and its values in every row?",
                                   parent=self):
            return
        try:
            self.on_delete()
        except ClientError as e:
            self.error_label.config(text=str(e))
            return
        self.destroy()


class EntryDialog(tk.Toplevel):
    """Add-row form with an inline error label per field."""

    def __init__(self, parent, controller, on_added):
        super().__init__(parent)
        self.title("Add Row")
        self.transient(parent)
        self.controller = controller
        self.on_added = on_added
        self.vars = {}
        self.error_labels = {}

        for i, fdef in enumerate(controller.fields):
            tk.Label(self, text=f"{fdef.name} ({fdef.type})").grid(
                row=i * 2, column=0, sticky="w", padx=8, pady=(4, 0))
            var = tk.StringVar()
            if fdef.type == "multiple_choice":
                widget = ttk.Combobox(self, textvariable=var, values=[""] + (fdef.options or []),
                                      state="readonly", width=27)
            else:
                widget = tk.Entry(self, textvariable=var, width=30)
            widget.grid(row=i * 2, column=1, padx=8, pady=(4, 0))
            error = tk.Label(self, text="", fg="red", font=("Arial", 8))
            error.grid(row=i * 2 + 1, column=1, sticky="w", padx=8)
            self.vars[fdef.name] = var
            self.error_labels[fdef.name] = error

        self.message_label = tk.Label(self, text="", fg="red")
        self.message_label.grid(row=len(controller.fields) * 2, column=0, columnspan=2)

        buttons = tk.Frame(self)
        buttons.grid(row=len(controller.fields) * 2 + 1, column=0, columnspan=2, pady=8)
        tk.Button(buttons, text="Add", width=8, command=self._submit).pack(side="left", padx=2)
        tk.Button(buttons, text="Cancel", width=8, command=self.destroy).pack(side="left", padx=2)
        self.grab_set()

    def _submit(self):
        for label in self.error_labels.values():
            label.config(text="")
        self.message_label.config(text="")
        data = {name: var.get() for name, var in self.vars.items()}
        try:
            entry = self.controller.add_entry(data)
        except ApiError as e:
            for name, msg in e.errors.items():
                if name in self.error_labels:
                    self.error_labels[name].config(text=msg)
                else:
                    self.message_label.config(text=msg)
            if not e.errors:
                self.message_label.config(text=e.message)
            return
        except ClientError as e:
            self.message_label.config(text=str(e))
            return
        self.on_added(entry)
        self.destroy()


class GridbookGUI:
    def __init__(self, api_url=None, serve=False, db_path=None, port=8080):
        self.root = tk.Tk()
        self.root.title(f"Gridbook v{__version__}")
        self.root.geometry("1000x640")
        self.root.minsize(700, 400)

        self.port = port
        self.db_path = db_path
        self.server_thread = None
        self.uvicorn_server = None

        self.client = GridbookClient(api_url or (f"http://127.0.0.1:{port}" if serve else None))
        self.controller = GridController(self.client)
        self.tables = []

        # Grid widgets, rebuilt by _render()
        self._cell_widgets = {}      # widget -> (row, col)
        self._cell_labels = {}       # (row, col) -> label
        self._row_vars = {}          # entry id -> BooleanVar
        self._editor = None
        self._press_cell = None
        self._rendering = False

        self._create_widgets()

        self._tk_log_handler = TkLogHandler(
            lambda msg, tag=None: self.root.after(0, self._show_status, msg, tag)
        )
        self._tk_log_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        for name in ("gridbook", "gridbook_core"):
            logging.getLogger(name).setLevel(logging.INFO)
            logging.getLogger(name).addHandler(self._tk_log_handler)

        self.root.protocol("WM_DELETE_WINDOW", self.quit_app)

        if serve:
            self._start_server_threaded()
            self.root.after(1000, self.refresh_tables)
        else:
            self.root.after(0, self.refresh_tables)

    # -- layout -------------------------------------------------------------

    def _create_widgets(self):
        header_frame = tk.Frame(self.root, bg="#2196F3", height=44)
        header_frame.pack(fill="x")
        header_frame.pack_propagate(False)
        tk.Label(header_frame, text="Gridbook", font=("Arial", 14, "bold"),
                 bg="#2196F3", fg="white").pack(side="left", padx=12)
        self.header_table_label = tk.Label(header_frame, text="", font=("Arial", 10),
                                           bg="#2196F3", fg="#BBDEFB")
        self.header_table_label.pack(side="left")

        body = tk.Frame(self.root)
        body.pack(fill="both", expand=True, padx=10, pady=10)

        # Left: tables
        table_frame = tk.LabelFrame(body, text="Tables", padx=8, pady=8)
        table_frame.pack(side="left", fill="y")
        self.table_listbox = tk.Listbox(table_frame, width=24, selectmode="browse",
                                        exportselection=False)
        self.table_listbox.pack(fill="both", expand=True)
        self.table_listbox.bind("<<ListboxSelect>>", self._on_table_select)
        tk.Button(table_frame, text="New Table", width=18,
                  command=self.create_table).pack(pady=(6, 2))
        tk.Button(table_frame, text="Delete Table", width=18, fg="white", bg="#f44336",
                  command=self.delete_table).pack(pady=2)

        # Right: grid + controls
        grid_outer = tk.LabelFrame(body, text="Entries", padx=8, pady=8)
        grid_outer.pack(side="left", fill="both", expand=True, padx=(10, 0))

        toolbar = tk.Frame(grid_outer)
        toolbar.pack(fill="x")
        tk.Button(toolbar, text="Add Field", command=self.add_field).pack(side="left", padx=2)
        tk.Button(toolbar, text="Add Row", command=self.add_entry).pack(side="left", padx=2)
        self.bulk_delete_btn = tk.Button(toolbar, text="Delete Selected (0)", state="disabled",
                                         command=self.bulk_delete)
        self.bulk_delete_btn.pack(side="left", padx=2)
        tk.Button(toolbar, text="Refresh", command=self.refresh_grid).pack(side="right", padx=2)

        canvas = tk.Canvas(grid_outer, highlightthickness=0)
        yscroll = tk.Scrollbar(grid_outer, orient="vertical", command=canvas.yview)
        xscroll = tk.Scrollbar(grid_outer, orient="horizontal", command=canvas.xview)
        canvas.configure(yscrollcommand=yscroll.set, xscrollcommand=xscroll.set)
        xscroll.pack(side="bottom", fill="x")
        yscroll.pack(side="right", fill="y")
        canvas.pack(side="left", fill="both", expand=True, pady=(6, 0))
        self.grid_frame = tk.Frame(canvas)
        canvas.create_window((0, 0), window=self.grid_frame, anchor="nw")
        self.grid_frame.bind("<Configure>",
                             lambda e: canvas.configure(scrollregion=canvas.bbox("all")))

        self.status_label = tk.Label(
            self.root, text="Click a cell to edit. Tab, Enter and the arrow keys move "
                            "between cells; Escape cancels.",
            anchor="w", fg="#555", font=("Arial", 9))
        self.status_label.pack(fill="x", padx=10, pady=(0, 6))

    # -- status -------------------------------------------------------------

    def _show_status(self, text, tag=None):
        color = {"ERROR": "red", "WARNING": "#E65100"}.get(tag, "#555")
        self.status_label.config(text=time.strftime("[%H:%M:%S] ") + text, fg=color)

    def _report(self, title, exc):
        self._show_status(f"{title}: {exc}", "ERROR")
        messagebox.showerror(title, str(exc))

    # -- tables -------------------------------------------------------------

    def refresh_tables(self, select_id=None):
        try:
            self.tables = self.client.list_tables()
        except ClientError as e:
            self._report("Load Error", e)
            return
        self.table_listbox.delete(0, "end")
        for t in self.tables:
            self.table_listbox.insert("end", t['name'])
        if select_id:
            for i, t in enumerate(self.tables):
                if t['id'] == select_id:
                    self.table_listbox.selection_set(i)
                    self._open_table(t)

    def _on_table_select(self, event):
        sel = self.table_listbox.curselection()
        if sel:
            self._open_table(self.tables[sel[0]])

    def _open_table(self, table):
        try:
            self.controller.load(table['id'])
        except ClientError as e:
            self._report("Load Error", e)
            return
        self.header_table_label.config(text=table['name'])
        self._render()

    def create_table(self):
        name = simpledialog.askstring("New Table", "Table name:", parent=self.root)
        if name is None:
            return
        try:
            table = self.client.create_table(name)
        except ApiError as e:
            if e.status == 409:
                messagebox.showwarning("Name Taken", f"{e.message}\nPlease choose another name.")
            else:
                self._report("Create Table", e)
            return
        except ClientError as e:
            self._report("Create Table", e)
            return
        self.refresh_tables(select_id=table['id'])

    def delete_table(self):
        sel = self.table_listbox.curselection()
        if not sel:
            return
        table = self.tables[sel[0]]
        if not messagebox.askyesno("Delete Table",
                                   f"Delete table \"{table['name']}\" and all of its entries?"):
            return
        try:
            self.client.delete_table(table['id'])
        except ClientError as e:
            self._report("Delete Table", e)
            return
        if self.controller.table_id == table['id']:
            self.controller = GridController(self.client)
            self.header_table_label.config(text="")
            self._render()
        self.refresh_tables()

    # -- fields & rows ------------------------------------------------------

    def add_field(self):
        if not self.controller.table_id:
            return
        FieldDialog(self.root, "Add Field",
                    on_save=lambda n, t, o: (self.controller.add_field(n, t, o), self._render()))

    def edit_field(self, fdef):
        FieldDialog(self.root, f"Edit Field: {fdef.name}", field=fdef,
                    on_save=lambda n, t, o: (
                        self.controller.update_field(fdef.id, n, t, o), self._render()),
                    on_delete=lambda: (self.controller.delete_field(fdef.id), self._render()))

    def add_entry(self):
        if not self.controller.table_id:
            return
        if not self.controller.fields:
            messagebox.showinfo("Add Row", "Add a field before adding rows.")
            return
        EntryDialog(self.root, self.controller, on_added=lambda entry: self._render())

    def delete_entry(self, entry_id):
        if not messagebox.askyesno("Delete Row",
                                   "Delete this entry? This action cannot be undone."):
            return
        try:
            self.controller.delete_entry(entry_id)
        except ClientError as e:
            self._report("Delete Row", e)
        self._render()

    def bulk_delete(self):
        count = len(self.controller.selection)
        if not count:
            return
        if not messagebox.askyesno("Delete Rows",
                                   f"Are you sure you want to delete {count} selected rows?"):
            return
        try:
            self.controller.bulk_delete()
        except BulkDeleteError as e:
            details = "\n".join(f"{eid}: {msg}" for eid, msg in e.failures.items())
            self._show_status(str(e), "ERROR")
            messagebox.showerror("Delete Rows", f"{e}\n\n{details}")
        except ClientError as e:
            self._report("Delete Rows", e)
        self._render()

    def refresh_grid(self):
        if not self.controller.table_id:
            return
        try:
            self.controller.reload()
        except ClientError as e:
            self._report("Load Error", e)
            return
        self._render()

    # -- grid rendering -----------------------------------------------------

    def _render(self):
        """Rebuild the grid widgets from the controller."""
        self._rendering = True
        try:
            for child in self.grid_frame.winfo_children():
                child.destroy()
            self._cell_widgets.clear()
            self._cell_labels.clear()
            self._row_vars.clear()
            self._editor = None

            ctl = self.controller
            ids = ctl.entry_ids()
            all_var = tk.BooleanVar(value=bool(ids) and len(ctl.selection) == len(ids))
            tk.Checkbutton(self.grid_frame, variable=all_var, bg=COLORS['header'],
                           command=lambda: self._select_all(all_var.get())).grid(
                row=0, column=0, sticky="nsew")
            for col, fdef in enumerate(ctl.fields):
                header = tk.Label(self.grid_frame, text=f"{fdef.name}\n{fdef.type}",
                                  width=CELL_WIDTH, bg=COLORS['header'], relief="ridge",
                                  font=("Arial", 9, "bold"), cursor="hand2")
                header.grid(row=0, column=col + 1, sticky="nsew")
                header.bind("<Button-1>", lambda e, f=fdef: self.edit_field(f))

            for row, entry in enumerate(ctl.entries):
                var = tk.BooleanVar(value=entry['id'] in ctl.selection)
                self._row_vars[entry['id']] = var
                tk.Checkbutton(self.grid_frame, variable=var,
                               command=lambda eid=entry['id'], v=var: self._toggle_row(eid, v)
                               ).grid(row=row + 1, column=0)
                for col, fdef in enumerate(ctl.fields):
                    cell = (row, col)
                    if isinstance(ctl.state, Editing) and ctl.state.cell == cell:
                        self._make_editor(cell, ctl.state.value)
                        continue
                    label = tk.Label(self.grid_frame, text=ctl.display_value(row, col),
                                     width=CELL_WIDTH, anchor="w", relief="groove",
                                     bg=COLORS['cell'])
                    label.grid(row=row + 1, column=col + 1, sticky="nsew")
                    label.bind("<ButtonPress-1>", self._on_press)
                    label.bind("<B1-Motion>", self._on_motion)
                    label.bind("<ButtonRelease-1>", self._on_release)
                    self._cell_widgets[label] = cell
                    self._cell_labels[cell] = label
                tk.Button(self.grid_frame, text="✕", fg="#f44336", relief="flat",
                          command=lambda eid=entry['id']: self.delete_entry(eid)).grid(
                    row=row + 1, column=len(ctl.fields) + 1)

            self._paint()
            self._update_bulk_button()
            if ctl.error:
                self._show_status(ctl.error, "ERROR")
        finally:
            self._rendering = False

    def _paint(self):
        """Recolor cells for drag selection and per-cell errors."""
        ctl = self.controller
        for cell, label in self._cell_labels.items():
            entry = ctl.entries[cell[0]]
            fdef = ctl.fields[cell[1]]
            if (entry['id'], fdef.id) in ctl.cell_errors:
                label.config(bg=COLORS['error'])
            elif ctl.is_drag_selected(cell):
                label.config(bg=COLORS['drag'])
            else:
                label.config(bg=COLORS['cell'])
        errors = list(ctl.cell_errors.values())
        if errors:
            self._show_status(errors[-1], "ERROR")

    def _make_editor(self, cell, value):
        editor = tk.Entry(self.grid_frame, width=CELL_WIDTH, relief="solid")
        editor.insert(0, value)
        editor.grid(row=cell[0] + 1, column=cell[1] + 1, sticky="nsew")
        for sequence, key, shift in (("<Return>", "Enter", False),
                                     ("<Shift-Return>", "Enter", True),
                                     ("<Tab>", "Tab", False),
                                     ("<Shift-Tab>", "Tab", True),
                                     ("<ISO_Left_Tab>", "Tab", True),
                                     ("<Up>", "Up", False),
                                     ("<Down>", "Down", False),
                                     ("<Left>", "Left", False),
                                     ("<Right>", "Right", False)):
            editor.bind(sequence, lambda e, k=key, s=shift: self._on_key(k, s))
        editor.bind("<Escape>", lambda e: self._dispatch(Escape()) or "break")
        editor.bind("<FocusOut>", self._on_blur)
        editor.focus_set()
        editor.icursor("end")
        self._editor = editor

    # -- event → action -----------------------------------------------------

    def _dispatch(self, action):
        before = self.controller.state
        self.controller.dispatch(action)
        if self.controller.state != before or self.controller.cell_errors:
            self._render()

    def _sync_editor(self):
        if self._editor is not None:
            self.controller.dispatch(Input(self._editor.get()))

    def _on_key(self, key, shift):
        editor = self._editor
        if editor is None:
            return None
        at_start = editor.index("insert") == 0
        at_end = editor.index("insert") == len(editor.get())
        if key in ("Left", "Right") and not (at_start if key == "Left" else at_end):
            return None
        self._sync_editor()
        self._dispatch(Key(key, shift=shift, caret_at_start=at_start, caret_at_end=at_end))
        return "break"

    def _on_blur(self, event):
        if self._rendering or event.widget is not self._editor:
            return
        self._sync_editor()
        self._dispatch(Blur())

    def _cell_at(self, event):
        widget = self.root.winfo_containing(event.x_root, event.y_root)
        return self._cell_widgets.get(widget)

    def _on_press(self, event):
        cell = self._cell_widgets.get(event.widget)
        self._press_cell = cell
        if cell is None:
            return
        if self._editor is not None:
            self._sync_editor()
        self.controller.dispatch(MouseDown(cell))
        self._paint()

    def _on_motion(self, event):
        cell = self._cell_at(event)
        if cell is not None:
            self.controller.dispatch(MouseMove(cell))
            self._paint()

    def _on_release(self, event):
        self.controller.dispatch(MouseUp())
        cell = self._cell_at(event)
        if cell is not None and cell == self._press_cell:
            self._dispatch(Click(cell))
        else:
            self._paint()
        self._press_cell = None

    def _toggle_row(self, entry_id, var):
        self.controller.selection.toggle(entry_id, var.get())
        self._update_bulk_button()

    def _select_all(self, selected):
        if selected:
            self.controller.selection.select_all(self.controller.entry_ids())
        else:
            self.controller.selection.clear()
        for eid, var in self._row_vars.items():
            var.set(eid in self.controller.selection)
        self._update_bulk_button()

    def _update_bulk_button(self):
        count = len(self.controller.selection)
        self.bulk_delete_btn.config(text=f"Delete Selected ({count})",
                                    state="normal" if count else "disabled")

    # -- embedded server ----------------------------------------------------

    def _start_server_threaded(self):
        """Start the API server in a daemon thread."""
        if self.db_path:
            from gridbook_core import _set_paths_for_testing
            _set_paths_for_testing(os.path.abspath(self.db_path))
        self._show_status(f"Starting API server on port {self.port}...", "INFO")
        self.server_thread = threading.Thread(target=self._run_web_server, daemon=True)
        self.server_thread.start()

    def _run_web_server(self):
        """Run the FastAPI app with uvicorn (called in thread)."""
        try:
            import uvicorn
            from .app import app

            config = uvicorn.Config(app, host='127.0.0.1', port=self.port, log_level='warning')
            self.uvicorn_server = uvicorn.Server(config)
            self.uvicorn_server.run()
        except OSError as e:
            logger.error("Could not start server on port %d: %s", self.port, e)

    def quit_app(self):
        if self.uvicorn_server:
            self.uvicorn_server.should_exit = True
            if self.server_thread:
                self.server_thread.join(timeout=5)
        self.root.quit()
        self.root.destroy()

    def run(self):
        """Start GUI main loop."""
        self.root.mainloop()


def main():
    """Main entry point."""
    import argparse
    parser = argparse.ArgumentParser(description="Gridbook Desktop")
    parser.add_argument('--api-url', type=str, default=None,
                        help='API base URL (overrides GRIDBOOK_API_URL)')
    parser.add_argument('--serve', action='store_true',
                        help='Start the API server in-process')
    parser.add_argument('--db-path', type=str, default=None,
                        help='Database file for the in-process server')
    parser.add_argument('--port', type=int, default=8080,
                        help='Port for the in-process server (default: 8080)')
    args = parser.parse_args()

    try:
        gui = GridbookGUI(api_url=args.api_url, serve=args.serve,
                          db_path=args.db_path, port=args.port)
        gui.run()
    except Exception:
        import traceback
        print("GUI Error:", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()

"""
Air Duct Flow Network - GUI Version

Interactive visual editor for air duct networks.
- Place sources (air inlets), junctions and outlets on the canvas
- Connect them with duct runs (arrows from upstream to downstream)
- Set source flows, target velocity, default duct shape and drawing scale
- Every change recalculates flows and recommended duct sizes
- Export the results as text or CSV
"""

import math
import time
import tkinter as tk
from tkinter import ttk, messagebox, simpledialog, filedialog
from typing import Optional

# Import network data structures
from duct_network import DuctNetwork, DuctNetworkError, DuctShape, NodeKind

# Import calculation functions
from calculations import DuctConfig, recompute, flow_balance
from duct_export import build_text_summary, build_route_tree, export_results_csv, format_number


# Colors for the different node kinds
NODE_COLORS = {
    NodeKind.SOURCE: "#90EE90",    # Light green
    NodeKind.JUNCTION: "#F0E68C",  # Khaki
    NodeKind.OUTLET: "#FFB6C1",    # Light pink
}

SHAPE_COLORS = {
    DuctShape.ROUND: "blue",
    DuctShape.RECTANGULAR: "#B8860B",
}

NODE_RADIUS = 22
MAX_LOG_ENTRIES = 50


def point_to_line_distance(px, py, x1, y1, x2, y2) -> float:
    """Calculate distance from point to line segment"""
    dx = x2 - x1
    dy = y2 - y1

    if dx == 0 and dy == 0:
        return math.hypot(px - x1, py - y1)

    t = max(0, min(1, ((px - x1) * dx + (py - y1) * dy) / (dx * dx + dy * dy)))
    return math.hypot(px - (x1 + t * dx), py - (y1 + t * dy))


class DuctNetworkGUI:
    def __init__(self, root):
        self.root = root
        self.root.title("Air Duct Network - Flow & Duct Size Calculator")
        self.root.geometry("1300x850")

        # Data structures
        self.network = DuctNetwork()
        self.config = DuctConfig()

        # GUI state
        self.current_mode = None
        self.drawing_duct = False
        self.duct_start_node = None
        self.selected_node: Optional[str] = None
        self.drag_node: Optional[str] = None
        self.clipboard_node: Optional[str] = None
        self.last_warnings = set()

        self.setup_gui()
        self.recalculate()
        self.log("Started")

    def setup_gui(self):
        """Set up the GUI layout"""
        main_frame = ttk.Frame(self.root)
        main_frame.pack(fill=tk.BOTH, expand=True)

        self.main_paned = tk.PanedWindow(main_frame, orient=tk.HORIZONTAL, sashwidth=6, sashrelief=tk.RAISED)
        self.main_paned.pack(fill=tk.BOTH, expand=True)

        # Left panel - Tools
        left_panel = ttk.Frame(self.main_paned, width=180)
        tools = ttk.Frame(left_panel)
        tools.pack(fill=tk.BOTH, expand=True, padx=3, pady=3)

        ttk.Label(tools, text="Add Node:", font=('Arial', 9, 'bold')).pack(anchor='w')
        for kind in NodeKind:
            ttk.Button(tools, text=kind.value.capitalize(),
                       command=lambda k=kind: self.add_node_mode(k)).pack(fill=tk.X, pady=1)

        self.duct_btn = ttk.Button(tools, text="Draw Duct", command=self.toggle_duct_mode)
        self.duct_btn.pack(fill=tk.X, pady=2)

        ttk.Separator(tools, orient=tk.HORIZONTAL).pack(fill=tk.X, pady=5)

        # Settings
        ttk.Label(tools, text="Settings:", font=('Arial', 9, 'bold')).pack(anchor='w')
        settings = ttk.Frame(tools)
        settings.pack(fill=tk.X)

        ttk.Label(settings, text="Velocity (m/s)").grid(row=0, column=0, sticky='w')
        self.velocity_var = tk.StringVar(value=f"{self.config.velocity:g}")
        velocity_entry = ttk.Entry(settings, textvariable=self.velocity_var, width=7)
        velocity_entry.grid(row=0, column=1, pady=1)
        velocity_entry.bind('<Return>', self.apply_settings)

        ttk.Label(settings, text="Scale (px/m)").grid(row=1, column=0, sticky='w')
        self.scale_var = tk.StringVar(value=f"{self.config.scale:g}")
        scale_entry = ttk.Entry(settings, textvariable=self.scale_var, width=7)
        scale_entry.grid(row=1, column=1, pady=1)
        scale_entry.bind('<Return>', self.apply_settings)

        ttk.Label(settings, text="Shape").grid(row=2, column=0, sticky='w')
        self.shape_var = tk.StringVar(value=self.config.default_shape.value)
        shape_box = ttk.Combobox(settings, textvariable=self.shape_var, width=10, state='readonly',
                                 values=[shape.value for shape in DuctShape])
        shape_box.grid(row=2, column=1, pady=1)
        shape_box.bind('<<ComboboxSelected>>', self.apply_settings)

        ttk.Button(tools, text="Apply", command=self.apply_settings).pack(fill=tk.X, pady=2)

        ttk.Separator(tools, orient=tk.HORIZONTAL).pack(fill=tk.X, pady=5)

        ttk.Button(tools, text="Export Text", command=self.export_text).pack(fill=tk.X, pady=1)
        ttk.Button(tools, text="Export CSV", command=self.export_csv).pack(fill=tk.X, pady=1)
        ttk.Button(tools, text="Clear Selection", command=self.clear_selection).pack(fill=tk.X, pady=1)
        ttk.Button(tools, text="Clear All", command=self.clear_all).pack(fill=tk.X, pady=2)

        self.main_paned.add(left_panel, minsize=20, width=180)

        # Canvas for drawing (center)
        canvas_frame = ttk.Frame(self.main_paned)
        self.canvas = tk.Canvas(canvas_frame, bg='white', width=800, height=600)
        self.canvas.pack(fill=tk.BOTH, expand=True)

        self.canvas.bind('<Button-1>', self.on_canvas_click)
        self.canvas.bind('<Button-3>', self.on_right_click)
        self.canvas.bind('<B1-Motion>', self.on_drag)
        self.canvas.bind('<ButtonRelease-1>', self.on_release)

        self.root.bind('<Delete>', self.delete_selection)
        self.root.bind('<Control-c>', self.copy_node)
        self.root.bind('<Control-v>', self.paste_node)

        self.main_paned.add(canvas_frame, minsize=200)

        # Right panel - Results and log
        right_panel = ttk.Frame(self.main_paned, width=340)
        ttk.Label(right_panel, text="Results:", font=('Arial', 10, 'bold')).pack(anchor='w', padx=5, pady=(5, 0))
        self.results_text = tk.Text(right_panel, width=44, height=28, font=('Consolas', 9))
        self.results_text.pack(fill=tk.BOTH, expand=True, padx=5)
        ttk.Label(right_panel, text="Log:", font=('Arial', 10, 'bold')).pack(anchor='w', padx=5, pady=(5, 0))
        self.log_text = tk.Text(right_panel, width=44, height=10, font=('Consolas', 8))
        self.log_text.pack(fill=tk.BOTH, padx=5, pady=(0, 5))
        self.main_paned.add(right_panel, minsize=20, width=340)

        # Status bar
        self.status_var = tk.StringVar(value="Ready. Add nodes and ducts to create a network.")
        status_bar = ttk.Label(self.root, textvariable=self.status_var, relief=tk.SUNKEN)
        status_bar.pack(side=tk.BOTTOM, fill=tk.X)

    # ------------------------------------------------------------------
    # Status, log and recalculation
    # ------------------------------------------------------------------

    def log(self, message: str):
        """Add a timestamped entry on top of the log panel"""
        timestamp = time.strftime("%H:%M:%S")
        self.log_text.insert("1.0", f"[{timestamp}] {message}\n")
        # Keep the newest entries only
        self.log_text.delete(f"{MAX_LOG_ENTRIES + 1}.0", tk.END)

    def set_status(self, text: str):
        self.status_var.set(text)
        self.log(text)

    def recalculate(self):
        """Recompute flows and sizes, then redraw everything"""
        result = recompute(self.network, self.config)
        # Only log warnings that were not there after the previous change
        for warning in result.warnings:
            if warning not in self.last_warnings:
                self.log(f"Warning: {warning}")
        self.last_warnings = set(result.warnings)
        if not result.converged:
            self.status_var.set(result.warnings[0])
        self.redraw()
        self.display_results()

    def apply_settings(self, event=None):
        """Read velocity, scale and default shape from the settings panel"""
        try:
            velocity = float(self.velocity_var.get())
            scale = float(self.scale_var.get())
        except ValueError:
            messagebox.showerror("Error", "Velocity and scale must be numbers", parent=self.root)
            return
        if not (math.isfinite(velocity) and math.isfinite(scale)) or velocity <= 0 or scale <= 0:
            messagebox.showwarning("Warning", "Velocity and scale must be finite and greater than zero",
                                   parent=self.root)
            return
        self.config = self.config.replace(velocity=velocity, scale=scale,
                                          default_shape=DuctShape(self.shape_var.get()))
        self.recalculate()
        self.set_status(f"Settings: v={velocity:g} m/s, {scale:g} px/m, {self.shape_var.get()}")

    # ------------------------------------------------------------------
    # Modes and canvas events
    # ------------------------------------------------------------------

    def add_node_mode(self, kind: NodeKind):
        """Enter mode to add a new node"""
        self.current_mode = ('add_node', kind)
        self.drawing_duct = False
        self.status_var.set(f"Click on canvas to place {kind.value}")

    def toggle_duct_mode(self):
        """Toggle duct drawing mode"""
        self.drawing_duct = not self.drawing_duct
        self.current_mode = None
        self.duct_start_node = None
        if self.drawing_duct:
            self.status_var.set("Click on upstream node, then downstream node")
            self.duct_btn.configure(text="Cancel Duct Drawing")
        else:
            self.status_var.set("Ready")
            self.duct_btn.configure(text="Draw Duct")

    def get_node_at(self, x, y) -> Optional[str]:
        for node in self.network.nodes:
            if math.hypot(node.x - x, node.y - y) <= NODE_RADIUS:
                return node.id
        return None

    def get_duct_at(self, x, y) -> Optional[str]:
        for edge in self.network.edges:
            start = self.network.get_node(edge.from_node)
            end = self.network.get_node(edge.to_node)
            if point_to_line_distance(x, y, start.x, start.y, end.x, end.y) < 8:
                return edge.id
        return None

    def on_canvas_click(self, event):
        clicked_node = self.get_node_at(event.x, event.y)

        if self.current_mode and self.current_mode[0] == 'add_node':
            self.create_node(event.x, event.y, self.current_mode[1])
            self.current_mode = None

        elif self.drawing_duct:
            if clicked_node:
                if self.duct_start_node is None:
                    self.duct_start_node = clicked_node
                    self.status_var.set("Now click on downstream node")
                else:
                    if clicked_node != self.duct_start_node:
                        self.create_duct(self.duct_start_node, clicked_node)
                    self.duct_start_node = None

        elif clicked_node:
            self.selected_node = clicked_node
            self.drag_node = clicked_node
            self.redraw()
        else:
            self.selected_node = None
            self.redraw()

    def on_right_click(self, event):
        """Context menu for nodes and ducts"""
        clicked_node = self.get_node_at(event.x, event.y)
        clicked_duct = None if clicked_node else self.get_duct_at(event.x, event.y)

        menu = tk.Menu(self.root, tearoff=0)
        if clicked_node:
            menu.add_command(label=f"Edit {clicked_node}", command=lambda: self.edit_node(clicked_node))
            menu.add_command(label=f"Delete {clicked_node}", command=lambda: self.delete_node(clicked_node))
        elif clicked_duct:
            menu.add_command(label=f"Edit {clicked_duct}", command=lambda: self.edit_duct(clicked_duct))
            menu.add_command(label=f"Delete {clicked_duct}", command=lambda: self.delete_duct(clicked_duct))
        else:
            for kind in NodeKind:
                menu.add_command(label=f"Add {kind.value}",
                                 command=lambda k=kind: self.create_node(event.x, event.y, k))
        menu.post(event.x_root, event.y_root)

    def on_drag(self, event):
        if self.drag_node and not self.drawing_duct:
            self.network.move_node(self.drag_node, event.x, event.y)
            self.redraw()

    def on_release(self, event):
        if self.drag_node:
            self.drag_node = None
            # Lengths depend on node positions
            self.recalculate()

    # ------------------------------------------------------------------
    # Network operations
    # ------------------------------------------------------------------

    def create_node(self, x, y, kind: NodeKind):
        """Create a new node, asking for the flow of sources"""
        flow = None
        if kind == NodeKind.SOURCE:
            flow = simpledialog.askfloat("Source Flow", "Enter source flow (m³/min):",
                                         initialvalue=self.network.default_source_flow,
                                         minvalue=0.0, parent=self.root)
        node_id = self.network.add_node(kind, x=x, y=y, declared_flow=flow)
        self.selected_node = node_id
        self.recalculate()
        self.set_status(f"Created {kind.value} {node_id}")

    def create_duct(self, from_id: str, to_id: str):
        try:
            edge_id = self.network.add_edge(from_id, to_id)
        except DuctNetworkError as e:
            self.set_status(f"Connection failed: {e}")
            return
        self.recalculate()
        self.set_status(f"Created duct {edge_id} from {from_id} to {to_id}")

    def edit_node(self, node_id: str):
        node = self.network.get_node(node_id)
        name = simpledialog.askstring("Node Name", "Name:", initialvalue=node.name, parent=self.root)
        if name:
            self.network.rename_node(node_id, name)
        if node.kind == NodeKind.SOURCE:
            flow = simpledialog.askfloat("Source Flow", f"Flow of {node.name} (m³/min):",
                                         initialvalue=node.declared_flow, minvalue=0.0, parent=self.root)
            if flow is not None:
                self.network.set_declared_flow(node_id, flow)
        self.recalculate()
        self.set_status(f"Updated node {node.name}")

    def edit_duct(self, edge_id: str):
        """Edit shape override and pinned rectangular size of a duct"""
        edge = self.network.get_edge(edge_id)

        dialog = tk.Toplevel(self.root)
        dialog.title(f"Edit Duct {edge_id}")
        dialog.transient(self.root)
        dialog.grab_set()

        ttk.Label(dialog, text="Shape:").grid(row=0, column=0, padx=5, pady=5, sticky='e')
        shape_var = tk.StringVar(value=edge.shape_override.value if edge.shape_override else "default")
        ttk.Combobox(dialog, textvariable=shape_var, state='readonly', width=12,
                     values=["default"] + [shape.value for shape in DuctShape]).grid(row=0, column=1, padx=5, pady=5)

        ttk.Label(dialog, text="Width (mm, 0 = auto):").grid(row=1, column=0, padx=5, pady=5, sticky='e')
        width_var = tk.DoubleVar(value=edge.pinned_width or 0.0)
        ttk.Entry(dialog, textvariable=width_var, width=10).grid(row=1, column=1, padx=5, pady=5, sticky='w')

        ttk.Label(dialog, text="Height (mm, 0 = auto):").grid(row=2, column=0, padx=5, pady=5, sticky='e')
        height_var = tk.DoubleVar(value=edge.pinned_height or 0.0)
        ttk.Entry(dialog, textvariable=height_var, width=10).grid(row=2, column=1, padx=5, pady=5, sticky='w')

        def save():
            try:
                shape = None if shape_var.get() == "default" else DuctShape(shape_var.get())
                width, height = width_var.get(), height_var.get()
                self.network.configure_edge(edge_id, shape, width, height)
            except (tk.TclError, ValueError) as e:
                messagebox.showerror("Error", f"Invalid duct size: {e}", parent=dialog)
                return
            dialog.destroy()
            self.recalculate()
            self.set_status(f"Updated duct {edge_id}")

        ttk.Button(dialog, text="Save", command=save).grid(row=3, column=0, columnspan=2, pady=10)

    def delete_node(self, node_id: str):
        """Delete a node and its connected ducts"""
        self.network.remove_node(node_id)
        if self.selected_node == node_id:
            self.selected_node = None
        self.recalculate()
        self.set_status(f"Deleted {node_id} and its ducts")

    def delete_duct(self, edge_id: str):
        self.network.remove_edge(edge_id)
        self.recalculate()
        self.set_status(f"Deleted duct {edge_id}")

    def delete_selection(self, event=None):
        if self.selected_node and self.selected_node in self.network:
            self.delete_node(self.selected_node)

    def copy_node(self, event=None):
        if self.selected_node:
            self.clipboard_node = self.selected_node
            self.status_var.set(f"Copied {self.selected_node}")

    def paste_node(self, event=None):
        if not self.clipboard_node or self.clipboard_node not in self.network:
            return
        node_id = self.network.duplicate_node(self.clipboard_node)
        self.selected_node = node_id
        self.recalculate()
        self.set_status(f"Pasted node {node_id}")

    def clear_selection(self):
        self.selected_node = None
        self.duct_start_node = None
        self.redraw()

    def clear_all(self):
        """Clear all nodes and ducts"""
        if messagebox.askyesno("Confirm", "Clear all nodes and ducts?", parent=self.root):
            self.network.clear()
            self.selected_node = None
            self.clipboard_node = None
            self.recalculate()
            self.set_status("Cleared all")

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------

    def redraw(self):
        """Redraw the entire canvas"""
        self.canvas.delete("all")
        # Draw ducts first (behind nodes)
        for edge in self.network.edges:
            self.draw_duct(edge)
        for node in self.network.nodes:
            self.draw_node(node)

    def draw_node(self, node):
        x, y = node.x, node.y
        r = NODE_RADIUS
        if node.id == self.selected_node:
            self.canvas.create_oval(x - r - 4, y - r - 4, x + r + 4, y + r + 4,
                                    outline="#0078D7", width=3, dash=(5, 2))
        self.canvas.create_oval(x - r, y - r, x + r, y + r,
                                fill=NODE_COLORS.get(node.kind, "#FFFFFF"), outline="black", width=2)
        self.canvas.create_text(x, y, text=node.name, font=('Arial', 9, 'bold'))
        self.canvas.create_text(x, y + r + 10, text=f"{format_number(node.resolved_flow)} m³/min",
                                font=('Arial', 8), fill="gray")

    def draw_duct(self, edge):
        start = self.network.get_node(edge.from_node)
        end = self.network.get_node(edge.to_node)
        dx, dy = end.x - start.x, end.y - start.y
        distance = math.hypot(dx, dy) or 1.0
        # Stop the line at the node outlines
        ux, uy = dx / distance, dy / distance
        x1, y1 = start.x + ux * NODE_RADIUS, start.y + uy * NODE_RADIUS
        x2, y2 = end.x - ux * NODE_RADIUS, end.y - uy * NODE_RADIUS

        color = SHAPE_COLORS.get(edge.shape, "blue")
        self.canvas.create_line(x1, y1, x2, y2, arrow=tk.LAST, width=2, fill=color)
        label = f"{edge.length:.1f}m / {edge.size_label()} / {format_number(edge.efficiency)}%"
        self.canvas.create_text((x1 + x2) / 2, (y1 + y2) / 2 - 10, text=label,
                                font=('Arial', 8), fill=color)

    def display_results(self):
        """Show flows, sizes and the route tree in the results panel"""
        self.results_text.delete(1.0, tk.END)
        lines = ["=== NODES ==="]
        for node in self.network.nodes:
            lines.append(f"{node.name:<8} {node.kind.value:<9} {format_number(node.resolved_flow):>9} m³/min")
        lines.append("")
        lines.append("=== DUCTS ===")
        for edge in self.network.edges:
            lines.append(f"{edge.id}: {format_number(edge.carried_flow)} m³/min, "
                         f"{edge.size_label()}, eff {format_number(edge.efficiency)}%")
        supplied, delivered = flow_balance(self.network)
        lines.append("")
        lines.append("=== FLOW BALANCE ===")
        lines.append(f"Sources: {format_number(supplied)} m³/min")
        lines.append(f"Outlets: {format_number(delivered)} m³/min")
        lines.append("")
        lines.append("=== ROUTES ===")
        lines.append(build_route_tree(self.network))
        self.results_text.insert(tk.END, "\n".join(lines))

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_text(self):
        """Show the text summary in a window the user can copy from"""
        summary = build_text_summary(self.network)
        if not summary:
            messagebox.showwarning("Warning", "No ducts to export. Please draw a network first!", parent=self.root)
            return
        window = tk.Toplevel(self.root)
        window.title("Duct Summary")
        text = tk.Text(window, width=90, height=20, font=('Consolas', 9))
        text.pack(fill=tk.BOTH, expand=True)
        text.insert(tk.END, summary)
        self.log("Exported text summary")

    def export_csv(self):
        """Export calculation results to CSV file"""
        if not self.network.edges:
            messagebox.showwarning("Warning", "No ducts to export. Please draw a network first!", parent=self.root)
            return

        filename = filedialog.asksaveasfilename(
            parent=self.root,
            defaultextension=".csv",
            filetypes=[("CSV files", "*.csv"), ("All files", "*.*")]
        )
        if not filename:
            return

        try:
            export_results_csv(self.network, filename)
        except OSError as e:
            messagebox.showerror("Error", f"Failed to export: {e}", parent=self.root)
            return
        self.set_status(f"Results exported to {filename}")


def main():
    root = tk.Tk()
    app = DuctNetworkGUI(root)
    root.mainloop()


if __name__ == "__main__":
    main()

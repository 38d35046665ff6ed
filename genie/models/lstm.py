import numpy as np
import torch
import torch.nn as nn


def lstm_cell(x, c, h, kernel, bias, forget_bias: float = 1.0):
    """
    One step of a BasicLSTMCell in the trained model's convention.

    x: (B, in), c/h: (B, units), kernel: (in + units, 4*units), bias: (4*units,)
    Gates are packed as [i, j, f, o]; forget_bias is added at run time and
    is not part of the stored bias.
    """
    z = torch.cat([x, h], dim=-1) @ kernel + bias  # (B, 4*units)
    i, j, f, o = torch.chunk(z, 4, dim=-1)
    new_c = c * torch.sigmoid(f + forget_bias) + torch.sigmoid(i) * torch.tanh(j)
    new_h = torch.tanh(new_c) * torch.sigmoid(o)
    return new_c, new_h


def to_torch_lstm_weights(kernel, bias, forget_bias: float = 1.0):
    """
    Convert a packed [i, j, f, o] kernel/bias into nn.LSTMCell layout.

    nn.LSTMCell computes x @ W_ih.T + b_ih + h @ W_hh.T + b_hh with gates in
    [i, f, g, o] order, so the kernel is split at the input size, transposed,
    and its gate blocks reordered. The forget bias is folded into b_ih.

    Returns numpy arrays (weight_ih, weight_hh, bias_ih, bias_hh).
    """
    kernel = np.asarray(kernel, dtype=np.float32)
    bias = np.asarray(bias, dtype=np.float32)
    units = bias.shape[0] // 4
    in_size = kernel.shape[0] - units

    i, j, f, o = np.split(kernel, 4, axis=1)
    reordered = np.concatenate([i, f, j, o], axis=1)  # (in + units, 4*units)
    bi, bj, bf, bo = np.split(bias, 4)

    weight_ih = reordered[:in_size].T.copy()
    weight_hh = reordered[in_size:].T.copy()
    bias_ih = np.concatenate([bi, bf + forget_bias, bj, bo]).astype(np.float32)
    bias_hh = np.zeros_like(bias_ih)
    return weight_ih, weight_hh, bias_ih, bias_hh


class ReferenceDecoder(nn.Module):
    """
    The decoder assembled from stock torch layers.

    Used to record golden traces and to cross-check the hand-written cell:
    it shares no arithmetic with lstm_cell apart from the parameters.
    """

    def __init__(
        self,
        num_keys: int,
        num_buttons: int,
        input_units: int,
        hidden: int,
        layers: int,
    ):
        super().__init__()
        self.num_keys = num_keys
        self.num_buttons = num_buttons
        self.hidden = hidden
        self.layers = layers

        self.rnn_input = nn.Linear(num_keys + 3, input_units)
        self.cells = nn.ModuleList(
            [
                nn.LSTMCell(input_units if l == 0 else hidden, hidden)
                for l in range(layers)
            ]
        )
        self.pitches = nn.Linear(hidden, num_keys)

    @classmethod
    def from_params(cls, params, cfg_model):
        """Build from a name -> numpy array mapping in manifest naming."""
        model = cls(
            num_keys=cfg_model["num_keys"],
            num_buttons=cfg_model["num_buttons"],
            input_units=cfg_model["rnn_input_units"],
            hidden=cfg_model["rnn_nunits"],
            layers=cfg_model["rnn_nlayers"],
        )
        forget_bias = cfg_model.get("forget_bias", 1.0)

        def _t(a):
            return torch.as_tensor(np.asarray(a, dtype=np.float32))

        with torch.no_grad():
            # dense kernels are stored (in, out); nn.Linear wants (out, in)
            model.rnn_input.weight.copy_(_t(params["decoder/rnn_input/kernel"]).T)
            model.rnn_input.bias.copy_(_t(params["decoder/rnn_input/bias"]))
            for l, cell in enumerate(model.cells):
                w_ih, w_hh, b_ih, b_hh = to_torch_lstm_weights(
                    params[f"decoder/rnn/cell_{l}/kernel"],
                    params[f"decoder/rnn/cell_{l}/bias"],
                    forget_bias,
                )
                cell.weight_ih.copy_(_t(w_ih))
                cell.weight_hh.copy_(_t(w_hh))
                cell.bias_ih.copy_(_t(b_ih))
                cell.bias_hh.copy_(_t(b_hh))
            model.pitches.weight.copy_(_t(params["decoder/pitches/kernel"]).T)
            model.pitches.bias.copy_(_t(params["decoder/pitches/bias"]))
        return model.eval()

    def init_state(self, batch_size: int = 1):
        zeros = torch.zeros(batch_size, self.hidden)
        return [(zeros.clone(), zeros.clone()) for _ in range(self.layers)]

    @torch.no_grad()
    def step(self, prev_key, dt, button, state=None):
        """
        prev_key: int in [-1, num_keys), dt: seconds, button: int in [0, num_buttons)
        returns logits (num_keys,) and the new [(h, c), ...] state
        """
        if state is None:
            state = self.init_state()

        key_feat = torch.zeros(1, self.num_keys + 1)
        key_feat[0, prev_key + 1] = 1.0
        button_real = 2.0 * button / (self.num_buttons - 1) - 1.0
        extra = torch.tensor([[float(dt), button_real]])
        x = self.rnn_input(torch.cat([key_feat, extra], dim=-1))

        new_state = []
        for cell, (h, c) in zip(self.cells, state):
            h, c = cell(x, (h, c))
            new_state.append((h, c))
            x = h
        logits = self.pitches(x)  # (1, num_keys)
        return logits.squeeze(0), new_state
